import re
import uuid
import hashlib

cgroup_runtime_id_re = re.compile(r'/(?:[\w\-]+-)?([a-f0-9]{24,})(?:\.scope)?$', re.IGNORECASE)
container_runtime_id_re = re.compile(r'^\w+://(.+)$')


def container_uuid(pod_uid, container_name):
    """
    Stable id of a logical container. Samples from different cycles for the same
    container join under this id without any lookup table.
    """
    digest = hashlib.md5(f'{pod_uid}:{container_name}'.encode()).hexdigest()
    return uuid.UUID(digest)


def parse_cgroup_runtime_id(cgroup):
    """
    :param cgroup: str, e.g. "/kubepods/burstable/pod<uid>/<runtime id>"
    :return: container runtime id or None
    """
    if not cgroup:
        return None
    match = cgroup_runtime_id_re.search(cgroup)
    if not match:
        return None
    return match.group(1)


def parse_container_runtime_id(container_id):
    """
    :param container_id: str, e.g. "containerd://<runtime id>"
    """
    if not container_id:
        return None
    match = container_runtime_id_re.match(container_id)
    if match is None:
        return None
    return match.group(1)
