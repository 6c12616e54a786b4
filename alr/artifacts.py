from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from urllib.parse import quote, urlsplit, urlunsplit

import httpx

from . import db
from .errors import ArtifactError
from .managers import Artifact
from .models import ApplicationSpec, GitSource, ReleaseSource
from .settings import settings

GITHUB_RELEASE_URL = "https://github.com/{owner}/{repo}/releases/download/{version}/{filename}"


def _download(url: str, dest: str, auth: tuple[str, str] | None = None) -> None:
    try:
        with httpx.stream(
            "GET", url, auth=auth, follow_redirects=True, timeout=settings.http_timeout_s
        ) as resp:
            if resp.status_code != 200:
                raise ArtifactError(f"Downloading {url} failed: HTTP {resp.status_code}")
            with open(dest, "wb") as fp:
                for chunk in resp.iter_bytes():
                    fp.write(chunk)
    except httpx.HTTPError as err:
        raise ArtifactError(f"Downloading {url} failed: {type(err).__name__}: {err}") from err


class SourceResolver:
    """Fetch the application source named by a spec into a local path."""

    def resolve(self, spec: ApplicationSpec) -> Artifact:
        if spec.docker_image:
            return Artifact(image=spec.docker_image)
        if spec.url:
            return self._from_url(spec.name, spec.url)
        if spec.github_release:
            return self._from_release(spec.name, spec.github_release)
        if spec.git:
            return self._from_git(spec.name, spec.git)
        raise ArtifactError(f"No source configured for application {spec.name}")

    def _from_url(self, app_name: str, url: str) -> Artifact:
        if url.startswith("file://"):
            path = url[len("file://"):]
            if not os.path.exists(path):
                raise ArtifactError(f"Local application path {path} does not exist")
            return Artifact(path=path)

        workdir = tempfile.mkdtemp(prefix="alr-")
        dest = os.path.join(workdir, os.path.basename(urlsplit(url).path) or "app.zip")
        db.log_event("INFO", f"Downloading application {app_name} from url {url}", app_name=app_name)
        try:
            _download(url, dest)
        except ArtifactError:
            shutil.rmtree(workdir, ignore_errors=True)
            raise
        return Artifact(path=dest, cleanup=True)

    def _from_release(self, app_name: str, release: ReleaseSource) -> Artifact:
        url = GITHUB_RELEASE_URL.format(
            owner=release.owner, repo=release.repo, version=release.version, filename=release.filename
        )
        auth = (release.user, release.password) if release.user and release.password else None

        workdir = tempfile.mkdtemp(prefix="alr-")
        db.log_event("INFO", f"Retrieving application {app_name} release {release.version}", app_name=app_name)
        try:
            _download(url, os.path.join(workdir, release.filename), auth=auth)
        except ArtifactError:
            shutil.rmtree(workdir, ignore_errors=True)
            raise
        return Artifact(path=workdir, cleanup=True)

    def _from_git(self, app_name: str, git: GitSource) -> Artifact:
        workdir = tempfile.mkdtemp(prefix="alr-")
        url = git.url
        if git.user and git.password:
            parts = urlsplit(url)
            netloc = f"{quote(git.user, safe='')}:{quote(git.password, safe='')}@{parts.hostname}"
            if parts.port:
                netloc += f":{parts.port}"
            url = urlunsplit(parts._replace(netloc=netloc))

        env = dict(os.environ)
        key_file = None
        if git.key:
            fd, key_file = tempfile.mkstemp(prefix="alr-key-")
            with os.fdopen(fd, "w") as fp:
                fp.write(git.key)
            os.chmod(key_file, 0o600)
            env["GIT_SSH_COMMAND"] = f"ssh -i {key_file} -o StrictHostKeyChecking=no"

        cmd = ["git", "clone", "--depth", "1", "--branch", git.tag or git.branch or "master", url, workdir]
        db.log_event("INFO", f"Cloning application {app_name} from {git.url}", app_name=app_name)
        try:
            proc = subprocess.run(cmd, env=env, capture_output=True, text=True)
        except OSError as err:
            shutil.rmtree(workdir, ignore_errors=True)
            raise ArtifactError(f"Cannot run git: {err}") from err
        finally:
            if key_file:
                os.remove(key_file)

        if proc.returncode != 0:
            shutil.rmtree(workdir, ignore_errors=True)
            raise ArtifactError(f"git clone of {git.url} failed: {proc.stderr.strip()}")
        shutil.rmtree(os.path.join(workdir, ".git"), ignore_errors=True)
        return Artifact(path=workdir, cleanup=True)
