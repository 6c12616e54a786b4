from __future__ import annotations

import os
import shutil
from threading import Thread

from . import db
from .errors import UploadFailure
from .managers import AppManager, Artifact
from .models import AddContent


class UploadTask:
    """Handle on an upload running in the background.

    `join()` is the one synchronization point: it blocks until the upload
    finished and raises `UploadFailure` if it did not succeed.
    """

    def __init__(self, thread: Thread | None = None):
        self._thr = thread
        self.error: BaseException | None = None

    def wait(self) -> BaseException | None:
        """Block until the upload finished and return its error, if any."""
        if self._thr is not None:
            self._thr.join()
        return self.error

    def join(self) -> None:
        error = self.wait()
        if error is None:
            return
        if isinstance(error, UploadFailure):
            raise error
        raise UploadFailure(f"Upload failed: {type(error).__name__}: {error}") from error


class UploadCoordinator:
    """Runs artifact uploads concurrently with route and binding work."""

    def __init__(self, apps: AppManager):
        self.apps = apps

    def dispatch(self, app_id: str, artifact: Artifact, add_content: list[AddContent] | None = None) -> UploadTask:
        """Start uploading `artifact` to `app_id` and return immediately.

        Container images need no upload; their task joins straight away.
        """
        if not artifact.path:
            return UploadTask()

        task = UploadTask()

        def _run() -> None:
            try:
                self.apps.upload_app(app_id, artifact.path, list(add_content or []))
                db.log_event("INFO", f"Uploaded application bits from {artifact.path}", app_id=app_id)
            except Exception as e:
                task.error = e
            finally:
                if artifact.cleanup:
                    remove_artifact(artifact.path)

        task._thr = Thread(target=_run, daemon=True)
        task._thr.start()
        return task


def drain(task: UploadTask, cause: BaseException, app_id: str) -> None:
    """Wait out an upload after `cause` aborted the work running beside it.

    A second failure of the upload itself is logged; `cause` stays the error
    the caller re-raises.
    """
    error = task.wait()
    if error is None or isinstance(cause, UploadFailure):
        return
    db.log_event("WARN", f"Upload to app {app_id} failed as well: {type(error).__name__}: {error}", app_id=app_id)

def remove_artifact(path: str) -> None:
    if os.path.isdir(path):
        shutil.rmtree(path, ignore_errors=True)
        return
    # Downloaded archives live in their own temporary directory.
    parent = os.path.dirname(path)
    if os.path.basename(parent).startswith("alr-"):
        shutil.rmtree(parent, ignore_errors=True)
    elif os.path.exists(path):
        os.remove(path)
