from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import requests

from cron_jenkins.errors import AuthenticationFailed, NotFound, UpstreamError, UpstreamUnavailable

from .parameters import ParamValue, ParameterDefinition, form_value
from .paths import JOB_DELIMITER, job_url_path, split_target


logger = logging.getLogger(__name__)

FOLDER_CLASSES = frozenset(
    {
        "com.cloudbees.hudson.plugins.folder.Folder",
        "jenkins.branch.OrganizationFolder",
        "org.jenkinsci.plugins.workflow.multibranch.WorkflowMultiBranchProject",
    }
)


@dataclass
class JenkinsAuthConfig:
    base_url: str
    username: Optional[str] = None
    api_token: Optional[str] = None
    verify_ssl: bool = True
    timeout: float = 30.0


@dataclass(frozen=True)
class JenkinsJob:
    full_path: str
    display_name: str
    kind: str
    url: str = ""
    color: Optional[str] = None

    @property
    def jenkins_path(self) -> str:
        """Job path in the Jenkins URL form ("folder/job/app")."""

        return JOB_DELIMITER.join(split_target(self.full_path))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "full_path": self.full_path,
            "display_name": self.display_name,
            "jenkins_path": self.jenkins_path,
            "kind": self.kind,
            "url": self.url,
            "color": self.color,
        }


def _body_preview(resp: requests.Response) -> str:
    try:
        return (resp.text or "")[:300]
    except Exception:  # noqa: BLE001
        return ""


def _raise_for_status(resp: requests.Response, url: str) -> None:
    status = resp.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise AuthenticationFailed(
            f"Jenkins rejected the credentials ({status}); check the username, API token and job permissions",
            status=status,
            url=url,
        )
    if status == 404:
        raise NotFound(f"Jenkins job or endpoint not found (404): {url}", status=status, url=url)
    if status >= 500:
        raise UpstreamUnavailable(f"Jenkins server error ({status}): {_body_preview(resp)}", status=status, url=url)
    raise UpstreamError(f"Jenkins request failed ({status}): {_body_preview(resp)}", status=status, url=url)


class JenkinsClient:
    """Jenkins client used by the scheduler to discover and trigger jobs.

    Every method raises an ``UpstreamError`` subclass on failure instead of
    returning an error payload, so callers can isolate failures per target.
    """

    def __init__(self, config: JenkinsAuthConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self._base = config.base_url.rstrip("/")
        # One session per client so the crumb's session cookie is reused.
        self._session = session or requests.Session()

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self._base}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self._url(path)
        auth = None
        if self.config.username and self.config.api_token:
            auth = (self.config.username, self.config.api_token)

        try:
            resp = self._session.request(
                method,
                url,
                auth=auth,
                verify=self.config.verify_ssl,
                timeout=self.config.timeout,
                **kwargs,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise UpstreamUnavailable(f"Jenkins unreachable: {exc}", url=url) from exc
        except requests.RequestException as exc:
            raise UpstreamError(f"Jenkins request error: {exc}", url=url) from exc

        _raise_for_status(resp, url)
        return resp

    def _json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        resp = self._request(method, path, **kwargs)
        try:
            body = resp.json()
        except ValueError as exc:
            raise UpstreamError(f"Invalid JSON from Jenkins: {_body_preview(resp)}", status=resp.status_code, url=resp.url) from exc
        return body if isinstance(body, dict) else {}

    def get_server_info(self) -> Dict[str, Any]:
        params = {"tree": "mode,nodeDescription,numExecutors,quietingDown,useSecurity"}
        return self._json("GET", "/api/json", params=params)

    def list_jobs(self) -> List[JenkinsJob]:
        """Return every buildable job, walking folders depth-first."""

        return self._walk([])

    def _walk(self, folder: List[str]) -> List[JenkinsJob]:
        path = f"{job_url_path('/'.join(folder))}/api/json" if folder else "/api/json"
        body = self._json("GET", path, params={"tree": "jobs[name,url,color]"})

        jobs: List[JenkinsJob] = []
        for item in body.get("jobs") or []:
            name = str(item.get("name") or "")
            if not name:
                continue
            segments = folder + [name]
            kind = str(item.get("_class") or "")
            if kind in FOLDER_CLASSES:
                jobs.extend(self._walk(segments))
                continue
            jobs.append(
                JenkinsJob(
                    full_path="/".join(segments),
                    display_name=str(item.get("displayName") or name),
                    kind=kind,
                    url=str(item.get("url") or ""),
                    color=item.get("color"),
                )
            )
        return jobs

    def get_job_info(self, target: str) -> Dict[str, Any]:
        return self._json("GET", f"{job_url_path(target)}/api/json")

    def get_parameter_definitions(self, target: str) -> List[ParameterDefinition]:
        info = self.get_job_info(target)
        definitions: List[ParameterDefinition] = []
        for prop in info.get("property") or []:
            if not isinstance(prop, dict):
                continue
            for raw in prop.get("parameterDefinitions") or []:
                if isinstance(raw, dict) and raw.get("name"):
                    definitions.append(ParameterDefinition.from_jenkins(raw))
        return definitions

    def get_git_branches(self, target: str) -> List[str]:
        info = self.get_job_info(target)
        scm = info.get("scm") or {}
        return [str(b.get("name")) for b in scm.get("branches") or [] if isinstance(b, dict) and b.get("name")]

    def get_crumb(self) -> Optional[Dict[str, str]]:
        """Fetch a CSRF crumb header; None when the server does not issue one."""

        try:
            body = self._json("GET", "/crumbIssuer/api/json")
        except UpstreamError as exc:
            logger.info("CSRF crumb unavailable, continuing without it: %s", exc)
            return None
        field = body.get("crumbRequestField")
        crumb = body.get("crumb")
        if field and crumb:
            return {str(field): str(crumb)}
        return None

    def trigger_build(self, target: str, parameters: Optional[Mapping[str, Optional[ParamValue]]] = None) -> Optional[str]:
        """Queue a build and return the queue item location, if Jenkins sent one.

        Absent (None) values are left out so Jenkins applies the defaults;
        any remaining value routes the call to ``buildWithParameters``.
        """

        form = {name: form_value(value) for name, value in (parameters or {}).items() if value is not None}
        endpoint = "buildWithParameters" if form else "build"

        headers: Dict[str, str] = {}
        crumb = self.get_crumb()
        if crumb:
            headers.update(crumb)

        resp = self._request(
            "POST",
            f"{job_url_path(target)}/{endpoint}",
            data=form or None,
            headers=headers,
        )
        location = resp.headers.get("Location")
        logger.info("Triggered Jenkins build %s (%s) -> %s", target, endpoint, location or resp.status_code)
        return location
