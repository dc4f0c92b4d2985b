from __future__ import annotations

import uvicorn

from geotally.config import SERVER_HOST, SERVER_PORT


def main() -> None:
    uvicorn.run("geotally.main:app", host=SERVER_HOST, port=SERVER_PORT)


if __name__ == "__main__":
    main()
