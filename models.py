# models.py
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class UploadedAsset:
    """One file received in the multipart upload."""
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


@dataclass
class Deployment:
    """Outcome of publishing a bundle to a hosting provider."""
    url: str  # Public site URL
    repo: str  # Source repository (GitHub) or site admin page (Netlify)
    message: str
    ready: bool = False  # Provider reported the site as built before we stopped polling
    failed_uploads: List[str] = field(default_factory=list)
