from ipfs_uploader.server.spec import UploadSpec, create_app

__all__ = ["UploadSpec", "create_app"]
