from pydantic import BaseModel, Field
from typing import Optional, List


class DocumentTag(BaseModel):
    id: str
    name: str
    slug: str


class VaultDocument(BaseModel):
    """A file in the document vault."""
    id: str
    name: Optional[str] = None              # storage file name
    title: Optional[str] = None
    summary: Optional[str] = None
    tag: Optional[str] = None               # primary category assigned by the classifier
    date: Optional[str] = None              # YYYY-MM-DD, document date (not upload time)
    language: Optional[str] = None
    path_tokens: Optional[List[str]] = None
    metadata: Optional[dict] = None         # size, mimetype, original_name
    processing_status: str = "pending"      # pending | processing | completed | failed
    tenant_scope_id: str
    owner_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    tags: List[DocumentTag] = Field(default_factory=list)


class VaultFilters(BaseModel):
    search: Optional[str] = None            # title / name / summary substring
    tags: List[str] = Field(default_factory=list)   # tag ids
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    owner_id: Optional[str] = None


class VaultDocumentUpdate(BaseModel):
    title: Optional[str] = None
    summary: Optional[str] = None
    tag: Optional[str] = None
    date: Optional[str] = None
    language: Optional[str] = None
    processing_status: Optional[str] = None


class Classification(BaseModel):
    """What the classifier may say about a document.  Every field is optional."""
    title: Optional[str] = None
    summary: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    language: Optional[str] = None
    date: Optional[str] = None


class StoredFile(BaseModel):
    path: str                               # opaque storage token
    size: int
    mimetype: str
