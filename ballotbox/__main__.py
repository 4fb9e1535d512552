"""
Service entrypoint:  python -m ballotbox

HOST / PORT choose the listen address (default 0.0.0.0:5003).
"""
import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "ballotbox.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "5003")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
