import hashlib
import io
import os
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse
from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import Session
from slugify import slugify

from ..config import settings
from ..db import get_db
from ..logging import get_logger
from ..models.models import FileObject, Job, User
from ..auth.security import get_current_user, has_role
from ..services.audit import log_action
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider


router = APIRouter(prefix="/upload", tags=["files"])
log = get_logger("swifttiger.files")

IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
DOCUMENT_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
ALLOWED_TYPES = IMAGE_TYPES | DOCUMENT_TYPES
UPLOAD_CATEGORIES = {
    "job-photo": IMAGE_TYPES,
    "avatar": IMAGE_TYPES,
    "document": DOCUMENT_TYPES,
    "attachment": ALLOWED_TYPES,
}
THUMBNAIL_SIZE = (320, 320)


def get_storage() -> StorageProvider:
    return LocalStorageProvider()


def canonical_key(category: Optional[str], job_id: Optional[str], original_name: str) -> str:
    today = datetime.utcnow().strftime("%Y-%m-%d")
    year = datetime.utcnow().strftime("%Y")
    safe_name = slugify(os.path.splitext(original_name)[0]) or "file"
    ext = os.path.splitext(original_name)[1].lower()
    folder = slugify(category or "files")
    scope = f"jobs/{job_id}" if job_id else "misc"
    # uuid suffix keeps same-named uploads from overwriting each other
    return f"{year}/{scope}/{folder}/{today}_{safe_name}_{uuid.uuid4().hex[:8]}{ext}"


def thumbnail_key(key: str) -> str:
    return f"{key}.thumb.jpg"


def _verify_image(data: bytes, name: str) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise HTTPException(status_code=400, detail=f"{name} is not a valid image")
    # verify() leaves the image unusable; reopen for processing
    return Image.open(io.BytesIO(data))


def _write_thumbnail(storage: StorageProvider, key: str, img: Image.Image) -> bool:
    try:
        thumb = img.convert("RGB")
        thumb.thumbnail(THUMBNAIL_SIZE)
        buf = io.BytesIO()
        thumb.save(buf, format="JPEG", quality=80)
        storage.save(thumbnail_key(key), buf.getvalue())
    except OSError as e:
        log.warning("thumbnail_failed", key=key, error=str(e))
        return False
    return True


def discard_keys(storage: StorageProvider, keys: List[str]) -> None:
    """Remove files written by a request whose transaction was rolled back."""
    for key in keys:
        if storage.exists(key):
            storage.delete(key)
    if keys:
        log.info("upload_discarded", keys=len(keys))


def store_upload(
    db: Session,
    storage: StorageProvider,
    data: bytes,
    original_name: str,
    content_type: Optional[str],
    user: User,
    category: str = "attachment",
    job_id: Optional[uuid.UUID] = None,
    allowed_types=None,
    max_bytes: Optional[int] = None,
    written: Optional[List[str]] = None,
) -> FileObject:
    """
    Validate and persist one uploaded file. Does not commit.

    Storage keys are appended to `written` as soon as they hit storage so the
    caller can discard them when its transaction rolls back.
    """
    written = written if written is not None else []
    allowed_types = allowed_types or ALLOWED_TYPES
    max_bytes = max_bytes or settings.max_upload_bytes
    content_type = (content_type or "application/octet-stream").lower()
    if content_type not in allowed_types:
        raise HTTPException(status_code=400, detail=f"File type {content_type} is not allowed")
    if len(data) == 0:
        raise HTTPException(status_code=400, detail=f"{original_name} is empty")
    if len(data) > max_bytes:
        raise HTTPException(status_code=413, detail=f"{original_name} exceeds the {max_bytes // (1024 * 1024)}MB limit")

    img = _verify_image(data, original_name) if content_type in IMAGE_TYPES else None
    key = canonical_key(category, str(job_id) if job_id else None, original_name)
    storage.save(key, data)
    written.append(key)
    if img is not None and _write_thumbnail(storage, key, img):
        written.append(thumbnail_key(key))

    fo = FileObject(
        provider=storage.name,
        key=key,
        original_name=original_name,
        content_type=content_type,
        size_bytes=len(data),
        checksum_sha256=hashlib.sha256(data).hexdigest(),
        category=category,
        job_id=job_id,
        created_by=user.id,
    )
    db.add(fo)
    db.flush()
    return fo


def file_to_dict(fo: FileObject) -> dict:
    is_image = (fo.content_type or "") in IMAGE_TYPES
    return {
        "id": str(fo.id),
        "original_name": fo.original_name,
        "content_type": fo.content_type,
        "size_bytes": fo.size_bytes,
        "checksum_sha256": fo.checksum_sha256,
        "category": fo.category,
        "job_id": str(fo.job_id) if fo.job_id else None,
        "url": f"{settings.api_prefix}/upload/{fo.id}/download",
        "thumbnail_url": f"{settings.api_prefix}/upload/{fo.id}/thumbnail" if is_image else None,
        "created_by": str(fo.created_by) if fo.created_by else None,
        "created_at": fo.created_at.isoformat() if fo.created_at else None,
    }


def _check_job(db: Session, job_id: Optional[uuid.UUID]) -> None:
    if job_id and not db.query(Job.id).filter(Job.id == job_id).first():
        raise HTTPException(status_code=400, detail="Job not found")


async def _handle_upload(
    files: List[UploadFile],
    category: str,
    job_id: Optional[uuid.UUID],
    request: Request,
    db: Session,
    storage: StorageProvider,
    user: User,
) -> dict:
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if len(files) > settings.max_upload_files:
        raise HTTPException(status_code=400, detail=f"At most {settings.max_upload_files} files per upload")
    _check_job(db, job_id)
    allowed = UPLOAD_CATEGORIES.get(category, ALLOWED_TYPES)
    stored = []
    written: List[str] = []
    try:
        for f in files:
            data = await f.read()
            stored.append(store_upload(
                db, storage, data, f.filename or "upload", f.content_type, user,
                category=category, job_id=job_id, allowed_types=allowed, written=written,
            ))
        db.commit()
    except Exception:
        db.rollback()
        discard_keys(storage, written)
        raise
    for fo in stored:
        db.refresh(fo)
    log_action(db, "UPLOAD_FILE", "FILE", None, user.id, {"files": [str(fo.id) for fo in stored], "category": category}, request)
    return {"files": [file_to_dict(fo) for fo in stored]}


@router.post("", status_code=201)
async def upload_files(
    request: Request,
    files: List[UploadFile] = File(...),
    category: str = Form("attachment"),
    job_id: Optional[uuid.UUID] = Form(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    return await _handle_upload(files, category, job_id, request, db, storage, user)


@router.post("/{upload_type}", status_code=201)
async def upload_typed(
    upload_type: str,
    request: Request,
    files: List[UploadFile] = File(...),
    job_id: Optional[uuid.UUID] = Form(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    if upload_type not in UPLOAD_CATEGORIES:
        raise HTTPException(status_code=400, detail=f"Unknown upload type: {upload_type}")
    return await _handle_upload(files, upload_type, job_id, request, db, storage, user)


def _get_file_or_404(db: Session, file_id: uuid.UUID) -> FileObject:
    fo = db.query(FileObject).filter(FileObject.id == file_id).first()
    if not fo:
        raise HTTPException(status_code=404, detail="File not found")
    return fo


@router.get("/info/{file_id}")
def file_info(file_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return file_to_dict(_get_file_or_404(db, file_id))


def _stream(storage: StorageProvider, key: str, content_type: str, filename: Optional[str]):
    if not storage.exists(key):
        raise HTTPException(status_code=404, detail="File content missing")
    headers = {}
    if filename:
        headers["Content-Disposition"] = f'inline; filename="{slugify(os.path.splitext(filename)[0]) or "file"}{os.path.splitext(filename)[1]}"'
    return StreamingResponse(storage.open(key), media_type=content_type, headers=headers)


@router.get("/{file_id}/download")
def download(
    file_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    _=Depends(get_current_user),
):
    fo = _get_file_or_404(db, file_id)
    return _stream(storage, fo.key, fo.content_type or "application/octet-stream", fo.original_name)


@router.get("/{file_id}/thumbnail")
def thumbnail(
    file_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    _=Depends(get_current_user),
):
    fo = _get_file_or_404(db, file_id)
    if (fo.content_type or "") not in IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="File is not an image")
    return _stream(storage, thumbnail_key(fo.key), "image/jpeg", None)


@router.delete("/{file_id}")
def delete_file(
    file_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    fo = _get_file_or_404(db, file_id)
    if fo.created_by != user.id and not has_role(user, "admin", "manager"):
        raise HTTPException(status_code=403, detail="Only the uploader or a manager can delete this file")
    key = fo.key
    original_name = fo.original_name
    db.delete(fo)
    db.commit()
    storage.delete(key)
    if storage.exists(thumbnail_key(key)):
        storage.delete(thumbnail_key(key))
    log_action(db, "DELETE_FILE", "FILE", file_id, user.id, {"original_name": original_name}, request)
    return {"status": "ok", "id": str(file_id)}
