"""
Kubernetes utility functions for the NetworkPolicy test planner

All cluster reads used by the detection code go through ClusterClient so that a
single explicit handle is threaded through every function (and can be replaced
by a fake in tests). Every API call is made with a bounded request timeout.
"""

# Standard library imports
import logging
import shutil
import subprocess
import time
import uuid

# Third-party imports
import urllib3
import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.stream import stream

# Set up module logger
log = logging.getLogger("netpol-planner.k8s_utils")

DEFAULT_REQUEST_TIMEOUT = 10
PROBE_NAMESPACE = "kube-system"
PROBE_IMAGE = "busybox:latest"


class ClusterUnreachableError(RuntimeError):
    """Raised when the Kubernetes API server cannot be reached at all."""


def _probe_pod_name(prefix):
    # Unique per run so a pod left behind by a crashed run never blocks creation
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def get_kubernetes_client():
    """
    Initialize and return a Kubernetes API client.

    Returns:
        kubernetes.client.ApiClient: Initialized Kubernetes API client
    """
    try:
        config.load_kube_config()
        log.debug("Loaded Kubernetes configuration from kube config file")
    except Exception as e:
        try:
            config.load_incluster_config()
            log.debug("Loaded in-cluster Kubernetes configuration")
        except Exception as in_cluster_e:
            log.error("Failed to load Kubernetes configuration: %s", str(e))
            log.error("In-cluster config also failed: %s", str(in_cluster_e))
            raise RuntimeError("Could not configure Kubernetes client") from e

    return client.ApiClient()


def run_host_command(command, timeout=15):
    """
    Run a command on the local host (not in the cluster).

    Args:
        command (list): Command and arguments
        timeout (int): Seconds before the command is abandoned

    Returns:
        tuple: (succeeded, stdout). A missing binary or a timeout counts as failure.
    """
    if not shutil.which(command[0]):
        return False, ""
    try:
        result = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        log.debug(f"Command timed out after {timeout}s: {' '.join(command)}")
        return False, ""
    return result.returncode == 0, result.stdout


class ClusterClient:
    """
    Read-only handle on one Kubernetes cluster.

    Args:
        api_client (kubernetes.client.ApiClient): Client to use; loaded from
            kubeconfig / in-cluster config when omitted
        request_timeout (int): Timeout in seconds applied to every API call
    """

    def __init__(self, api_client=None, request_timeout=DEFAULT_REQUEST_TIMEOUT):
        self.api_client = api_client or get_kubernetes_client()
        self.request_timeout = request_timeout
        self.core_v1 = client.CoreV1Api(self.api_client)
        self.apps_v1 = client.AppsV1Api(self.api_client)
        self._nodes = None

    def _call(self, func, *args, **kwargs):
        kwargs.setdefault("_request_timeout", self.request_timeout)
        try:
            return func(*args, **kwargs)
        except ApiException:
            raise
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise ClusterUnreachableError(f"Kubernetes API server is unreachable: {e}") from e

    # Cluster identity

    def api_server_url(self):
        """Return the API server URL of the active configuration."""
        return self.api_client.configuration.host or ""

    def current_context(self):
        """Return the active kubeconfig context name, or "" when running in-cluster."""
        try:
            _, active_context = config.list_kube_config_contexts()
        except (ConfigException, FileNotFoundError) as e:
            log.debug(f"No kubeconfig context available: {e}")
            return ""
        return (active_context or {}).get("name", "")

    def server_version(self):
        """Return the API server gitVersion (e.g. v1.28.0)."""
        version_api = client.VersionApi(self.api_client)
        return self._call(version_api.get_code).git_version

    # Nodes

    def list_nodes(self):
        """
        Get information about nodes in the cluster.

        Returns:
            list: List of node information dictionaries
        """
        if self._nodes is not None:
            return self._nodes

        node_list = self._call(self.core_v1.list_node)
        nodes = []
        for node in node_list.items:
            spec = node.spec
            node_info = node.status.node_info if node.status else None
            nodes.append({
                'name': node.metadata.name,
                'labels': node.metadata.labels or {},
                'provider_id': (spec.provider_id if spec else None) or "",
                'pod_cidr': (spec.pod_cidr if spec else None) or "",
                'os_image': (node_info.os_image if node_info else None) or "",
            })
        self._nodes = nodes
        return nodes

    def first_node(self):
        """Return the first node's information dictionary, or None for an empty cluster."""
        nodes = self.list_nodes()
        return nodes[0] if nodes else None

    def node_count(self):
        return len(self.list_nodes())

    def get_pod_cidr(self):
        """
        Get the Pod CIDR used in the cluster.

        Returns:
            str: Pod CIDR or None if not found
        """
        node = self.first_node()
        if node is None:
            log.warning("No nodes found in the cluster")
            return None
        if node['pod_cidr']:
            return node['pod_cidr']

        # kubeadm clusters keep the pod subnet in the ClusterConfiguration
        try:
            kubeadm_config = self._call(
                self.core_v1.read_namespaced_config_map,
                name="kubeadm-config",
                namespace="kube-system",
            )
        except ApiException as e:
            log.debug("Error getting kubeadm-config: %s", str(e))
            return None

        data = kubeadm_config.data or {}
        if 'ClusterConfiguration' not in data:
            return None
        cluster_config = yaml.safe_load(data['ClusterConfiguration']) or {}
        return (cluster_config.get('networking') or {}).get('podSubnet')

    # Workloads

    def daemonset_exists(self, name, namespace="kube-system"):
        return self._read_workload(self.apps_v1.read_namespaced_daemon_set, name, namespace) is not None

    def deployment_exists(self, name, namespace="kube-system"):
        return self._read_workload(self.apps_v1.read_namespaced_deployment, name, namespace) is not None

    def workload_image(self, kind, name, namespace="kube-system"):
        """
        Get the first container image of a DaemonSet or Deployment.

        Args:
            kind (str): "daemonset" or "deployment"
            name (str): Workload name
            namespace (str): Workload namespace

        Returns:
            str: Image reference, or None when the workload does not exist
        """
        readers = {
            'daemonset': self.apps_v1.read_namespaced_daemon_set,
            'deployment': self.apps_v1.read_namespaced_deployment,
        }
        workload = self._read_workload(readers[kind], name, namespace)
        if workload is None:
            return None
        containers = workload.spec.template.spec.containers or []
        return containers[0].image if containers else None

    def _read_workload(self, reader, name, namespace):
        try:
            return self._call(reader, name=name, namespace=namespace)
        except ApiException as e:
            if e.status != 404:
                log.debug(f"Error reading {namespace}/{name}: {e.status} {e.reason}")
            return None

    # Pods

    def list_running_pods(self):
        """Return (namespace, name) tuples of all running pods."""
        pods = self._call(
            self.core_v1.list_pod_for_all_namespaces,
            field_selector="status.phase=Running",
        )
        return [(pod.metadata.namespace, pod.metadata.name) for pod in pods.items]

    def exec_in_pod(self, namespace, name, command):
        """
        Run a command inside a pod and return its combined output.

        Returns:
            str: Command output, or "" when the exec could not be started
        """
        try:
            resp = stream(
                self.core_v1.connect_get_namespaced_pod_exec,
                name,
                namespace,
                command=command,
                stderr=True, stdin=False, stdout=True, tty=False,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            log.debug(f"Exec in {namespace}/{name} failed: {e.status} {e.reason}")
            return ""
        return resp or ""

    def kube_system_env_values(self, env_name):
        """Return the values of an environment variable across all kube-system containers."""
        pods = self._call(self.core_v1.list_namespaced_pod, namespace="kube-system")
        values = []
        for pod in pods.items:
            for container in pod.spec.containers or []:
                for env in container.env or []:
                    if env.name == env_name and env.value:
                        values.append(env.value)
        return values

    # API surface

    def network_policy_api_available(self):
        """Check whether networking.k8s.io/v1 serves the networkpolicies resource."""
        networking_v1 = client.NetworkingV1Api(self.api_client)
        try:
            resources = self._call(networking_v1.get_api_resources)
        except ApiException as e:
            log.debug(f"Error listing networking.k8s.io resources: {e.status} {e.reason}")
            return False
        return any(resource.name == "networkpolicies" for resource in resources.resources or [])

    # Probe pods

    def list_node_cni_binaries(self, node_name=None):
        """
        List /opt/cni/bin on a node through a short-lived hostPath pod.

        This needs permission to create privileged-ish pods in kube-system and
        is best-effort: any API error yields an empty list.

        Args:
            node_name (str): Node to inspect, defaults to the first node

        Returns:
            list: File names found in the node's CNI binary directory
        """
        if node_name is None:
            node = self.first_node()
            if node is None:
                return []
            node_name = node['name']

        pod_name = _probe_pod_name("netpol-cni-bin-checker")
        pod_manifest = client.V1Pod(
            metadata=client.V1ObjectMeta(name=pod_name, namespace=PROBE_NAMESPACE),
            spec=client.V1PodSpec(
                containers=[
                    client.V1Container(
                        name="checker",
                        image=PROBE_IMAGE,
                        command=["sleep", "60"],
                        volume_mounts=[
                            client.V1VolumeMount(name="cni-bin", mount_path="/host/opt/cni/bin", read_only=True)
                        ],
                    )
                ],
                volumes=[
                    client.V1Volume(
                        name="cni-bin",
                        host_path=client.V1HostPathVolumeSource(path="/opt/cni/bin"),
                    )
                ],
                node_name=node_name,
                restart_policy="Never",
                tolerations=[client.V1Toleration(operator="Exists")],
            ),
        )

        try:
            self._call(self.core_v1.create_namespaced_pod, namespace=PROBE_NAMESPACE, body=pod_manifest)
        except ApiException as e:
            log.debug(f"Could not create CNI binary checker pod: {e.status} {e.reason}")
            return []

        try:
            if not self._wait_for_phase(pod_name, PROBE_NAMESPACE, {"Running"}):
                log.debug("CNI binary checker pod never reached Running")
                return []
            output = self.exec_in_pod(PROBE_NAMESPACE, pod_name, ["ls", "/host/opt/cni/bin"])
            return [line.strip() for line in output.splitlines() if line.strip()]
        finally:
            self._delete_probe_pod(pod_name, PROBE_NAMESPACE)

    def check_external_connectivity(self, url="https://www.google.com", namespace="default", timeout=30):
        """
        Check whether pods can reach an external URL.

        Returns:
            bool: True when a busybox pod could fetch the URL
        """
        pod_name = _probe_pod_name("netpol-connectivity-check")
        pod_manifest = client.V1Pod(
            metadata=client.V1ObjectMeta(name=pod_name, namespace=namespace),
            spec=client.V1PodSpec(
                containers=[
                    client.V1Container(
                        name="wget",
                        image=PROBE_IMAGE,
                        command=["wget", "-q", "-O-", "-T", "10", url],
                    )
                ],
                restart_policy="Never",
            ),
        )

        try:
            self._call(self.core_v1.create_namespaced_pod, namespace=namespace, body=pod_manifest)
        except ApiException as e:
            log.warning(f"Could not create connectivity check pod: {e.status} {e.reason}")
            return False

        try:
            return self._wait_for_phase(pod_name, namespace, {"Succeeded"}, {"Failed"}, attempts=timeout)
        finally:
            self._delete_probe_pod(pod_name, namespace)

    def _wait_for_phase(self, name, namespace, wanted, terminal=frozenset(), attempts=10):
        for _ in range(attempts):
            try:
                pod = self._call(self.core_v1.read_namespaced_pod, name=name, namespace=namespace)
            except ApiException as e:
                log.debug(f"Error reading pod {namespace}/{name}: {e.status} {e.reason}")
                return False
            phase = pod.status.phase if pod.status else None
            if phase in wanted:
                return True
            if phase in terminal:
                return False
            time.sleep(1)
        return False

    def _delete_probe_pod(self, name, namespace):
        try:
            self._call(self.core_v1.delete_namespaced_pod, name=name, namespace=namespace)
            log.debug(f"Deleted probe pod {namespace}/{name}")
        except ApiException as e:
            log.warning(f"Error deleting probe pod {namespace}/{name}: {e.status} {e.reason}")
