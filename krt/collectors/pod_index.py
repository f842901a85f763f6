import logging
from typing import NamedTuple, Optional

from krt.utils import parse_container_runtime_id

log = logging.getLogger(__name__)


class PodIndexEntry(NamedTuple):
    uid: str
    node_name: Optional[str]


class RuntimeContainer(NamedTuple):
    namespace: str
    pod_name: str
    pod_uid: str
    container_name: str


class PodIndex:
    """
    Per cycle view of the target namespace pods:
    "namespace/name" -> PodIndexEntry and runtime container id -> RuntimeContainer.
    """

    def __init__(self, by_name=None, by_runtime_id=None):
        self.by_name = by_name or {}
        self.by_runtime_id = by_runtime_id or {}

    def get(self, namespace, pod_name):
        return self.by_name.get(f'{namespace}/{pod_name}')

    def uid(self, namespace, pod_name):
        entry = self.get(namespace, pod_name)
        return entry.uid if entry else None

    def resolve_runtime_id(self, runtime_id):
        if not runtime_id:
            return None
        return self.by_runtime_id.get(runtime_id)


def build_pod_index(v1, namespace, request_timeout=None):
    pod_list = v1.list_namespaced_pod(namespace, _request_timeout=request_timeout)
    index = PodIndex()

    for pod in pod_list.items or []:
        pod_namespace = pod.metadata.namespace or namespace
        pod_name = pod.metadata.name or ''
        index.by_name[f'{pod_namespace}/{pod_name}'] = PodIndexEntry(
            uid=pod.metadata.uid,
            node_name=pod.spec.node_name if pod.spec else None,
        )

        status = pod.status
        if status is None:
            continue
        statuses = [
            *(status.container_statuses or []),
            *(status.init_container_statuses or []),
            *(status.ephemeral_container_statuses or []),
        ]
        for container_status in statuses:
            runtime_id = parse_container_runtime_id(container_status.container_id)
            if not runtime_id:
                continue
            index.by_runtime_id[runtime_id] = RuntimeContainer(
                namespace=pod_namespace,
                pod_name=pod_name,
                pod_uid=pod.metadata.uid,
                container_name=container_status.name,
            )

    log.debug('Indexed %d pods, %d runtime containers', len(index.by_name), len(index.by_runtime_id))
    return index
