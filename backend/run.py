"""Run the API server"""
import sys
from pathlib import Path

# Make the tierstake package importable when run from a checkout
BASE_DIR = Path(__file__).resolve().parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

if __name__ == "__main__":
    import uvicorn

    from tierstake.core.config import get_settings
    from tierstake.main import create_app

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
