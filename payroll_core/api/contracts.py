"""
Contract download endpoint

Serves stored contract documents to holders of a signed URL.
"""

import re
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import Response

from .auth import PayrollSystem, get_payroll_system
from ..errors import StorageError
from ..logging_config import get_logger, log_action


router = APIRouter()
logger = get_logger("payroll_core.api.contracts")


def content_disposition(filename: str) -> str:
    """Inline disposition with an ASCII fallback name and the exact UTF-8 name"""
    fallback = re.sub(r'[^\x20-\x7e]|["\\]', "_", filename)
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


@router.get("/download")
async def download_contract(
    token: str,
    system: PayrollSystem = Depends(get_payroll_system)
):
    """Stream a contract referenced by a signed token"""
    try:
        path = system.blob_store.verify_token(token)
    except StorageError as e:
        log_action(logger, "warning", f"Rejected contract link: {e.user_message}",
                   action="download_contract", resource="contracts")
        raise HTTPException(status_code=403, detail=e.user_message)

    try:
        content, content_type = system.blob_store.download(path)
    except StorageError as e:
        raise HTTPException(status_code=404, detail=e.user_message)

    filename = path.rsplit("/", 1)[-1]
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": content_disposition(filename)}
    )
