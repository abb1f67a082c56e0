"""Run the mock server: python -m smssink"""

import uvicorn

from smssink.config import settings


def main() -> None:
    uvicorn.run(
        "smssink.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,  # keep the JSON logging configured in smssink.main
    )


if __name__ == "__main__":
    main()
