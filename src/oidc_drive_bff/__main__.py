# src/oidc_drive_bff/__main__.py

import uvicorn

from .config import settings


def run() -> None:
    uvicorn.run("oidc_drive_bff.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
