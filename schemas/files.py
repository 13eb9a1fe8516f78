from typing import List, Optional
from pydantic import BaseModel, Field


class DeleteFileRequest(BaseModel):
    fileId: str = Field(..., min_length=1)


class BulkDeleteRequest(BaseModel):
    fileIds: List[str] = Field(..., min_length=1)
    parentId: str = Field(..., min_length=1)


class MoveFileRequest(BaseModel):
    fileId: str = Field(..., min_length=1)
    currentParentId: str = Field(..., min_length=1)
    newParentId: str = Field(..., min_length=1)


class BulkMoveRequest(BaseModel):
    fileIds: List[str] = Field(..., min_length=1)
    currentParentId: str = Field(..., min_length=1)
    newParentId: str = Field(..., min_length=1)


class RenameFileRequest(BaseModel):
    fileId: str = Field(..., min_length=1)
    newName: str = Field(..., min_length=1, description="New name, HTML tags are stripped")


class CopyFileRequest(BaseModel):
    fileId: str = Field(..., min_length=1)
    destinationId: str = Field(..., min_length=1)
    newName: Optional[str] = None


class UpdateContentRequest(BaseModel):
    fileId: str = Field(..., min_length=1)
    newContent: str


class CreateFolderRequest(BaseModel):
    name: str = Field(..., min_length=1)
    parentId: str = Field(..., min_length=1)


class TrashRequest(BaseModel):
    """Either a single ``fileId`` or a list in ``fileIds``."""

    fileId: Optional[str] = None
    fileIds: Optional[List[str]] = None

    def ids(self) -> List[str]:
        ids = list(self.fileIds or [])
        if self.fileId:
            ids.append(self.fileId)
        return [i for i in ids if i]
