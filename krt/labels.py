import re

VERSION_LABELS = (
    'version',
    'app.kubernetes.io/version',
    'helm.sh/chart',
    'app.kubernetes.io/instance',
    'deployment-version',
    'release',
)

DEPLOYMENT_LABELS = (
    'app.kubernetes.io/name',
    'app',
    'k8s-app',
    'name',
)

# <deployment>-<replicaset hash>-<pod hash>
replicaset_pod_re = re.compile(r'^(.+)-[a-z0-9]{5,10}-[a-z0-9]{5}$')
# <statefulset>-<ordinal>
ordinal_pod_re = re.compile(r'^(.+)-\d+$')


def extract_version(labels):
    for key in VERSION_LABELS:
        if labels.get(key):
            return labels[key]
    return None


def infer_deployment_name(pod_name, labels):
    for key in DEPLOYMENT_LABELS:
        if labels.get(key):
            return labels[key]

    template_hash = labels.get('pod-template-hash')
    if template_hash:
        marker = f'-{template_hash}-'
        if marker in pod_name:
            return pod_name.rsplit(marker, 1)[0]

    match = replicaset_pod_re.match(pod_name) or ordinal_pod_re.match(pod_name)
    if match:
        return match.group(1)
    return pod_name
