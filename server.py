from dotenv import load_dotenv
import uvicorn

from ipfs_uploader.config import Settings
from ipfs_uploader.server import create_app

if __name__ == "__main__":
    load_dotenv()
    settings = Settings.from_env()
    app = create_app(settings)
    print(f"Server running on http://{settings.host}:{settings.port}")
    print(f"IPFS API endpoint: {settings.ipfs_api}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)
