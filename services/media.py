import logging
import os
import uuid

from werkzeug.utils import secure_filename

from services.errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'.jpeg', '.jpg', '.png', '.gif', '.mp4', '.mov', '.avi'}
URL_PREFIX = '/uploads/'


class MediaStore:
    """Stores uploaded images and videos on disk, handing back /uploads/ references."""

    def __init__(self, folder):
        self.folder = folder

    def _extension(self, filename):
        _, ext = os.path.splitext(secure_filename(filename or ''))
        ext = ext.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError('Only images and videos are allowed', filename=filename)
        return ext

    def save(self, file):
        """Save a Werkzeug FileStorage and return its reference string."""
        if file is None or not file.filename:
            raise ValidationError('No selected file')
        name = uuid.uuid4().hex + self._extension(file.filename)
        os.makedirs(self.folder, exist_ok=True)
        file.save(os.path.join(self.folder, name))
        logger.debug("Stored upload %s as %s", file.filename, name)
        return URL_PREFIX + name

    def discard(self, refs):
        """Delete files saved by this store; unknown references are ignored."""
        for ref in refs:
            if not ref.startswith(URL_PREFIX):
                continue
            path = os.path.join(self.folder, os.path.basename(ref))
            if os.path.isfile(path):
                os.remove(path)
                logger.debug("Discarded upload %s", ref)

    def save_all(self, files):
        # Check every extension before writing anything
        files = [f for f in files if f is not None and f.filename]
        for file in files:
            self._extension(file.filename)
        return [self.save(file) for file in files]
