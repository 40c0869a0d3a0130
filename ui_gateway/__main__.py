"""Run the gateway with uvicorn: ``python -m ui_gateway``."""
import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "ui_gateway.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "11011")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
