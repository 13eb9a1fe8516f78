from typing import Literal, Optional
from pydantic import BaseModel, EmailStr, Field


class EmailRequest(BaseModel):
    email: EmailStr


class ProtectedFolderRequest(BaseModel):
    folderId: str = Field(..., min_length=5)
    id: Optional[str] = Field(None, description="Access id, defaults to 'admin'")
    password: str = Field(..., min_length=1)


class FolderIdRequest(BaseModel):
    folderId: str = Field(..., min_length=1)


class UserAccessRequest(BaseModel):
    folderId: str = Field(..., min_length=1)
    email: EmailStr


class ManualDriveRequest(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class ManualDriveDeleteRequest(BaseModel):
    id: str = Field(..., min_length=1)


class CacheClearRequest(BaseModel):
    folderId: Optional[str] = None


class FileRequestCreate(BaseModel):
    folderId: str = Field(..., min_length=1)
    folderName: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    expiresIn: int = Field(..., ge=1, description="Lifetime in hours")


class FileRequestDelete(BaseModel):
    token: str = Field(..., min_length=1)


class FileIdRequest(BaseModel):
    fileId: str = Field(..., min_length=1)


class TagRequest(BaseModel):
    fileId: Optional[str] = None
    tag: Optional[str] = None
    action: Literal["add", "remove"] = "add"


class TrackPageViewRequest(BaseModel):
    path: str = Field(..., min_length=1)
    referrer: Optional[str] = None


class AccessRequestCreate(BaseModel):
    folderId: str = Field(..., min_length=1)
    folderName: str = Field(..., min_length=1)


class AccessRequestData(BaseModel):
    folderId: str = Field(..., min_length=1)
    email: EmailStr
    timestamp: int
    folderName: Optional[str] = None


class AccessRequestAction(BaseModel):
    action: Literal["approve", "reject"]
    requestData: AccessRequestData


class UserPasswordRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
