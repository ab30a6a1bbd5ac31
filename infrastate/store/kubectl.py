"""
Record store backed by a Kubernetes API, reached through the kubectl binary.
"""

import json
import logging
import subprocess
from typing import Any, Dict, List, Optional

from ..errors import AlreadyExistsError, NotFoundError, TransientStoreError
from ..models import Record, RecordKind, RecordPatch
from .base import RecordStore

logger = logging.getLogger(__name__)

_RESOURCES = {
    RecordKind.SECRET: "secret",
    RecordKind.CONFIG_MAP: "configmap",
}


class KubectlRecordStore(RecordStore):
    """
    Secrets and ConfigMaps through kubectl.

    Every call is a fresh round trip; nothing is cached.
    """

    def __init__(
        self,
        kubectl_binary: str = "kubectl",
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        timeout: int = 30,
    ):
        """
        Initialize KubectlRecordStore.

        Args:
            kubectl_binary: kubectl executable name or path
            kubeconfig: Optional kubeconfig path
            context: Optional kubeconfig context
            timeout: Seconds before a single kubectl call is abandoned
        """
        self.kubectl_binary = kubectl_binary
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout

    def get(self, kind: RecordKind, namespace: str, name: str) -> Record:
        stdout = self._run(
            ["get", _RESOURCES[kind], name, "-n", namespace, "-o", "json"],
            kind=kind, namespace=namespace, name=name,
        )
        return Record.from_manifest(self._parse(stdout))

    def list(self, kind: RecordKind, namespace: str, label_selector: str = "") -> List[Record]:
        args = ["get", _RESOURCES[kind], "-n", namespace, "-o", "json"]
        if label_selector:
            args += ["-l", label_selector]
        stdout = self._run(args, kind=kind, namespace=namespace, name="")
        items = self._parse(stdout).get("items") or []
        records = []
        for item in items:
            # list items come without kind
            item.setdefault("kind", kind.value)
            records.append(Record.from_manifest(item))
        return records

    def create(self, record: Record) -> Record:
        stdout = self._run(
            ["create", "-f", "-", "-o", "json"],
            kind=record.kind, namespace=record.namespace, name=record.name,
            stdin=json.dumps(record.to_manifest()),
        )
        return Record.from_manifest(self._parse(stdout))

    def update(self, record: Record) -> Record:
        stdout = self._run(
            ["replace", "-f", "-", "-o", "json"],
            kind=record.kind, namespace=record.namespace, name=record.name,
            stdin=json.dumps(record.to_manifest()),
        )
        return Record.from_manifest(self._parse(stdout))

    def merge_patch(self, kind: RecordKind, namespace: str, name: str, patch: RecordPatch) -> Record:
        stdout = self._run(
            [
                "patch", _RESOURCES[kind], name, "-n", namespace,
                "--type", "merge", "-p", json.dumps(patch.to_merge_patch(kind)), "-o", "json",
            ],
            kind=kind, namespace=namespace, name=name,
        )
        return Record.from_manifest(self._parse(stdout))

    def delete(self, kind: RecordKind, namespace: str, name: str) -> None:
        self._run(["delete", _RESOURCES[kind], name, "-n", namespace], kind=kind, namespace=namespace, name=name)

    def _base_args(self) -> List[str]:
        args = [self.kubectl_binary]
        if self.kubeconfig:
            args += ["--kubeconfig", self.kubeconfig]
        if self.context:
            args += ["--context", self.context]
        return args

    def _run(
        self,
        args: List[str],
        kind: RecordKind,
        namespace: str,
        name: str,
        stdin: Optional[str] = None,
    ) -> str:
        """
        Run kubectl and map failures onto store errors.

        Returns:
            kubectl stdout

        Raises:
            NotFoundError: The server answered NotFound
            AlreadyExistsError: The server answered AlreadyExists
            TransientStoreError: Any other failure
        """
        cmd = self._base_args() + args
        logger.debug(f"Running: {' '.join(cmd[:6])}")
        try:
            result = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TransientStoreError(f"kubectl {args[0]} timed out after {self.timeout}s") from e
        except OSError as e:
            raise TransientStoreError(f"kubectl could not be started: {e}") from e

        if result.returncode == 0:
            return result.stdout

        stderr = result.stderr.strip()
        if "NotFound" in stderr:
            raise NotFoundError(kind.value, namespace, name)
        if "AlreadyExists" in stderr:
            raise AlreadyExistsError(kind.value, namespace, name)
        raise TransientStoreError(f"kubectl {args[0]} failed (exit {result.returncode}): {stderr[:500]}")

    @staticmethod
    def _parse(stdout: str) -> Dict[str, Any]:
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise TransientStoreError(f"kubectl returned invalid JSON: {e}") from e
