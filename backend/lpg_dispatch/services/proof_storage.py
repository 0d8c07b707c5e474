# Overview: File storage for proof-of-delivery uploads ("receipts" bucket on local disk).

from __future__ import annotations

import os
import time

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename


def _has_content(upload: FileStorage | None) -> bool:
    if upload is None or not upload.filename:
        return False
    # content_length is often 0 for multipart parts; peek at the stream instead
    stream = upload.stream
    position = stream.tell()
    head = stream.read(1)
    stream.seek(position)
    return bool(head)


def save_delivery_proof(order_id: int, upload: FileStorage | None) -> str | None:
    """
    Store a delivery proof file and return its public URL.

    Returns None when there is nothing to store or storing failed. A failed
    upload never blocks a delivery; it is logged and the settlement goes on
    without a proof URL.
    """
    if not _has_content(upload):
        return None

    _, ext = os.path.splitext(secure_filename(upload.filename))
    file_name = f"delivery_{order_id}_{int(time.time() * 1000)}{ext.lower()}"
    target_dir = current_app.config["PROOF_UPLOAD_DIR"]

    try:
        os.makedirs(target_dir, exist_ok=True)
        upload.save(os.path.join(target_dir, file_name))
    except OSError:
        current_app.logger.warning("Proof upload failed for order %s; continuing without proof", order_id, exc_info=True)
        return None

    base_url = current_app.config["PROOF_PUBLIC_BASE_URL"].rstrip("/")
    return f"{base_url}/{file_name}"
