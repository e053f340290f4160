"""FaceGate - simple launcher."""
import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "facegate.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "5000")),
        reload=os.environ.get("RELOAD", "").lower() in ("1", "true", "yes"),
        reload_includes=["*.py"],
        reload_excludes=["__pycache__/*", "data/*", "logs/*"],
    )
