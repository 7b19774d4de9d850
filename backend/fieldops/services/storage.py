"""暫存檔物件儲存：本機目錄 storage_dir/{bucket}/{path}，對外網址 {public_base_url}/storage/{bucket}/{path}。"""
import logging
from pathlib import Path
from typing import Iterable, Optional

from fieldops.config import settings, resolve_storage_dir

logger = logging.getLogger(__name__)


class LocalObjectStorage:
    def __init__(self, root: Optional[Path] = None, bucket: Optional[str] = None, public_base_url: Optional[str] = None):
        self.root = root or resolve_storage_dir()
        self.bucket = bucket or settings.storage_bucket
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")

    def _resolve(self, path: str) -> Path:
        """路徑限制在 bucket 目錄內（防路徑穿越）"""
        base = (self.root / self.bucket).resolve()
        target = (base / path).resolve()
        if base != target and base not in target.parents:
            raise ValueError(f"invalid storage path: {path}")
        return target

    def upload(self, path: str, content: bytes) -> str:
        """寫入檔案並回傳公開網址"""
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return self.public_url(path)

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/storage/{self.bucket}/{path}"

    def path_from_url(self, file_url: str) -> Optional[str]:
        """由公開網址還原 bucket 內路徑；非本 bucket 的網址回傳 None"""
        marker = f"{self.bucket}/"
        if not file_url or marker not in file_url:
            return None
        return file_url.split(marker, 1)[1] or None

    def remove(self, paths: Iterable[str]) -> int:
        removed = 0
        for path in paths:
            target = self._resolve(path)
            if target.is_file():
                target.unlink()
                removed += 1
        return removed

    def remove_urls(self, file_urls: Iterable[str]) -> int:
        """刪除失敗只記 log，不影響資料列刪除"""
        paths = [p for p in (self.path_from_url(u) for u in file_urls) if p]
        try:
            return self.remove(paths)
        except (OSError, ValueError):
            logger.warning("Failed to remove staged files from storage: %s", paths, exc_info=True)
            return 0
