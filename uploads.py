import os
import time
import uuid
from flask import Blueprint, current_app, send_from_directory
from werkzeug.utils import secure_filename
import logging

uploads_bp = Blueprint('uploads', __name__)
logger = logging.getLogger(__name__)


def ensure_upload_folder(app):
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)


def stored_filename(original_name):
    """時間戳記 + 清理過的原始檔名,避免覆蓋與路徑穿越"""
    safe_name = secure_filename(original_name or '') or 'file'
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{safe_name}"


def save_upload(file_storage):
    """
    把上傳的檔案寫到 UPLOAD_FOLDER

    檔案先寫入磁碟再建立資料庫紀錄,資料庫失敗時檔案不會被刪除

    Returns:
        tuple: (原始檔名, 公開 URL)
    """
    filename = stored_filename(file_storage.filename)
    file_storage.save(os.path.join(current_app.config['UPLOAD_FOLDER'], filename))

    url = f"{current_app.config['UPLOAD_URL_PATH']}/{filename}"
    logger.info(f"File stored: {file_storage.filename} -> {url}")
    return file_storage.filename, url


@uploads_bp.route('/<path:filename>', methods=['GET'])
def serve_upload(filename):
    """公開的 /uploads 路徑"""
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename)
