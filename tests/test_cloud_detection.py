#!/usr/bin/env python3
"""
Tests for provider and CNI detection.

Every heuristic is exercised on its own against a fake cluster, then the
cascades are checked for ordering, fall-through and error handling.
"""

import os
import sys
import unittest
from unittest.mock import patch

from kubernetes.client.rest import ApiException

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fakes import make_cluster, make_node
from netpol_lib import cloud_detection
from netpol_lib.cloud_detection import (
    CNIPlugin,
    Provider,
    check_api_server_url,
    check_cni_conf_env,
    check_context_name,
    check_control_plane_fallback,
    check_daemonsets,
    check_deployments,
    check_microk8s,
    check_minikube_status,
    check_network_policy_support,
    check_node_cni_binaries,
    check_node_labels,
    check_pod_interfaces,
    check_provider_defaults,
    check_provider_id,
    detect_cni,
    detect_provider,
    generate_environment_report,
    get_cluster_name,
    get_cluster_region,
    get_cni_version,
)
from netpol_lib.k8s_utils import ClusterUnreachableError


def no_host_tools():
    return patch.object(cloud_detection, 'run_host_command', return_value=(False, ""))


class TestEnums(unittest.TestCase):

    def test_parse_known_names(self):
        self.assertEqual(Provider.parse("GKE"), Provider.GKE)
        self.assertEqual(CNIPlugin.parse(" vpc-cni "), CNIPlugin.VPC_CNI)

    def test_parse_unknown_names(self):
        self.assertEqual(Provider.parse("openshift"), Provider.UNKNOWN)
        self.assertEqual(Provider.parse(None), Provider.UNKNOWN)
        self.assertEqual(CNIPlugin.parse("antrea"), CNIPlugin.UNKNOWN)

    def test_str_is_value(self):
        self.assertEqual(str(Provider.MICROK8S), "microk8s")
        self.assertEqual(f"{CNIPlugin.KUBE_ROUTER}", "kube-router")


class TestProviderHeuristics(unittest.TestCase):

    def test_api_server_url(self):
        cases = {
            "https://container.googleapis.com/v1/projects/p": Provider.GKE,
            "https://ABCDEF.gr7.us-east-1.eks.amazonaws.com": Provider.EKS,
            "https://demo-dns-1234.hcp.eastus.azmk8s.io:443": Provider.AKS,
            "https://127.0.0.1:6443": None,
        }
        for url, expected in cases.items():
            self.assertEqual(check_api_server_url(make_cluster(url=url)), expected, url)

    def test_context_name(self):
        cases = {
            "kind-dev": Provider.KIND,
            "minikube": Provider.MINIKUBE,
            "default-k3s": Provider.K3S,
            "production": None,
            "": None,
        }
        for context, expected in cases.items():
            self.assertEqual(check_context_name(make_cluster(context=context)), expected, context)

    def test_minikube_status(self):
        with patch.object(cloud_detection, 'run_host_command', return_value=(True, "host: Running")):
            self.assertEqual(check_minikube_status(make_cluster()), Provider.MINIKUBE)
        with no_host_tools():
            self.assertIsNone(check_minikube_status(make_cluster()))

    def test_node_labels(self):
        cases = [
            ({"cloud.google.com/gke-nodepool": "default-pool"}, Provider.GKE),
            ({"eks.amazonaws.com/nodegroup": "ng-1"}, Provider.EKS),
            ({"alpha.eksctl.io/cluster-name": "demo"}, Provider.EKS),
            ({"kubernetes.azure.com/cluster": "MC_rg_demo"}, Provider.AKS),
            ({"node.kubernetes.io/instance-type": "k3s"}, Provider.K3S),
            ({"kubernetes.io/hostname": "kind-control-plane"}, Provider.KIND),
            ({"kubernetes.io/hostname": "worker-1"}, None),
        ]
        for labels, expected in cases:
            cluster = make_cluster(nodes=[make_node(labels=labels)])
            self.assertEqual(check_node_labels(cluster), expected, labels)

    def test_node_labels_without_nodes(self):
        self.assertIsNone(check_node_labels(make_cluster(nodes=[])))

    def test_provider_id(self):
        cases = {
            "gce://my-project/us-central1-a/gke-node": Provider.GKE,
            "aws:///us-east-1a/i-0123456789abcdef0": Provider.EKS,
            "azure:///subscriptions/x/resourceGroups/y": Provider.AKS,
            "k3s://server-1": Provider.K3S,
            "kind://docker/kind/kind-control-plane": None,
            "": None,
        }
        for provider_id, expected in cases.items():
            cluster = make_cluster(nodes=[make_node(provider_id=provider_id)])
            self.assertEqual(check_provider_id(cluster), expected, provider_id)

    def test_microk8s_from_os_image(self):
        cluster = make_cluster(nodes=[make_node(os_image="Ubuntu Core 22 (microk8s)")])
        with no_host_tools():
            self.assertEqual(check_microk8s(cluster), Provider.MICROK8S)

    def test_microk8s_from_snap(self):
        cluster = make_cluster(nodes=[make_node()])
        with patch.object(cloud_detection, 'run_host_command', return_value=(True, "core20  ...\nmicrok8s  v1.28.3")):
            self.assertEqual(check_microk8s(cluster), Provider.MICROK8S)
        with no_host_tools():
            self.assertIsNone(check_microk8s(cluster))

    def test_control_plane_fallback(self):
        control_plane = make_node(labels={"node-role.kubernetes.io/control-plane": ""})
        self.assertEqual(check_control_plane_fallback(make_cluster(nodes=[control_plane])), Provider.KIND)
        self.assertIsNone(check_control_plane_fallback(make_cluster(nodes=[make_node()])))


class TestDetectProvider(unittest.TestCase):

    @no_host_tools()
    def test_first_matching_heuristic_wins(self, _):
        cluster = make_cluster(url="https://x.gr7.us-east-1.eks.amazonaws.com", context="kind-dev")
        self.assertEqual(detect_provider(cluster), Provider.EKS)

    @no_host_tools()
    def test_falls_through_to_node_signals(self, _):
        cluster = make_cluster(nodes=[make_node(provider_id="gce://p/z/n")])
        self.assertEqual(detect_provider(cluster), Provider.GKE)

    @no_host_tools()
    def test_no_signal_is_unknown(self, _):
        cluster = make_cluster(nodes=[make_node()])
        self.assertEqual(detect_provider(cluster), Provider.UNKNOWN)

    @no_host_tools()
    def test_api_errors_skip_the_heuristic(self, _):
        cluster = make_cluster()
        cluster.first_node.side_effect = ApiException(status=403, reason="Forbidden")
        self.assertEqual(detect_provider(cluster), Provider.UNKNOWN)

    @no_host_tools()
    def test_unreachable_cluster_propagates(self, _):
        cluster = make_cluster()
        cluster.first_node.side_effect = ClusterUnreachableError("connection refused")
        with self.assertRaises(ClusterUnreachableError):
            detect_provider(cluster)


class TestCNIHeuristics(unittest.TestCase):

    def test_daemonsets(self):
        cases = {
            "calico-node": CNIPlugin.CALICO,
            "cilium": CNIPlugin.CILIUM,
            "weave-net": CNIPlugin.WEAVE,
            "kube-flannel-ds": CNIPlugin.FLANNEL,
            "aws-node": CNIPlugin.VPC_CNI,
            "azure-npm": CNIPlugin.AZURE_CNI,
            "kube-router": CNIPlugin.KUBE_ROUTER,
            "kube-proxy": None,
        }
        for daemonset, expected in cases.items():
            self.assertEqual(check_daemonsets(make_cluster(daemonsets={daemonset})), expected, daemonset)

    def test_daemonset_order_decides_ties(self):
        # Calico installed on top of the EKS VPC CNI
        cluster = make_cluster(daemonsets={"aws-node", "calico-node"})
        self.assertEqual(check_daemonsets(cluster), CNIPlugin.CALICO)

    def test_deployments(self):
        self.assertEqual(check_deployments(make_cluster(deployments={"calico-kube-controllers"})), CNIPlugin.CALICO)
        self.assertEqual(check_deployments(make_cluster(deployments={"cilium-operator"})), CNIPlugin.CILIUM)
        self.assertIsNone(check_deployments(make_cluster(deployments={"coredns"})))

    def test_pod_interfaces(self):
        cases = {
            "4: cali1a2b3c4d5e6@if3: <BROADCAST,MULTICAST,UP>": CNIPlugin.CALICO,
            "7: lxc9f8e7d6c5b4a@if6: <BROADCAST,MULTICAST,UP>": CNIPlugin.CILIUM,
            "3: weave: <BROADCAST,MULTICAST,UP>": CNIPlugin.WEAVE,
            "5: veth1234abcd@if2: master cni0 flannel.1": CNIPlugin.FLANNEL,
            "1: lo: <LOOPBACK,UP>\n2: eth0@if9: <BROADCAST>": None,
        }
        for output, expected in cases.items():
            cluster = make_cluster(pods=[("default", "web-0")], interfaces=output)
            self.assertEqual(check_pod_interfaces(cluster), expected, output)

    def test_pod_interfaces_without_pods(self):
        cluster = make_cluster(pods=[])
        self.assertIsNone(check_pod_interfaces(cluster))
        cluster.exec_in_pod.assert_not_called()

    def test_cni_conf_env(self):
        self.assertEqual(check_cni_conf_env(make_cluster(env_values=["10-calico.conflist"])), CNIPlugin.CALICO)
        self.assertEqual(check_cni_conf_env(make_cluster(env_values=["05-cilium.conf"])), CNIPlugin.CILIUM)
        self.assertIsNone(check_cni_conf_env(make_cluster(env_values=["99-custom.conf"])))
        self.assertIsNone(check_cni_conf_env(make_cluster(env_values=[])))

    def test_provider_defaults(self):
        dataplane_v2 = make_node(labels={"cloud.google.com/gke-netd": "true"})
        gke_routes = make_node(pod_cidr="10.4.0.0/24")
        aks_node = make_node(labels={"kubernetes.azure.com/network-plugin": "azure"})

        self.assertEqual(check_provider_defaults(make_cluster(nodes=[dataplane_v2]), Provider.GKE), CNIPlugin.CILIUM)
        self.assertEqual(check_provider_defaults(make_cluster(nodes=[gke_routes]), Provider.GKE), CNIPlugin.GCP_CNI)
        self.assertIsNone(check_provider_defaults(make_cluster(nodes=[]), Provider.GKE))
        self.assertEqual(check_provider_defaults(make_cluster(daemonsets={"aws-node"}), Provider.EKS), CNIPlugin.VPC_CNI)
        self.assertIsNone(check_provider_defaults(make_cluster(), Provider.EKS))
        self.assertEqual(check_provider_defaults(make_cluster(nodes=[aks_node]), Provider.AKS), CNIPlugin.AZURE_CNI)
        self.assertIsNone(check_provider_defaults(make_cluster(nodes=[gke_routes]), Provider.KIND))

    def test_gke_pod_cidr_from_cluster_configuration(self):
        cluster = make_cluster(nodes=[make_node()])
        cluster.get_pod_cidr.return_value = "10.244.0.0/16"
        self.assertEqual(check_provider_defaults(cluster, Provider.GKE), CNIPlugin.GCP_CNI)

        cluster.get_pod_cidr.return_value = None
        self.assertIsNone(check_provider_defaults(cluster, Provider.GKE))

    def test_node_cni_binaries(self):
        self.assertEqual(check_node_cni_binaries(make_cluster(cni_binaries=["bandwidth", "calico", "calico-ipam"])),
                         CNIPlugin.CALICO)
        self.assertEqual(check_node_cni_binaries(make_cluster(cni_binaries=["cilium-cni", "loopback"])),
                         CNIPlugin.CILIUM)
        self.assertIsNone(check_node_cni_binaries(make_cluster(cni_binaries=["bridge", "host-local"])))


class TestDetectCNI(unittest.TestCase):

    def test_daemonset_signal_wins(self):
        cluster = make_cluster(daemonsets={"cilium"}, env_values=["10-calico.conflist"])
        self.assertEqual(detect_cni(cluster, Provider.KIND), CNIPlugin.CILIUM)

    def test_api_errors_skip_the_heuristic(self):
        cluster = make_cluster(env_values=["10-flannel.conflist"])
        cluster.list_running_pods.side_effect = ApiException(status=403, reason="Forbidden")
        self.assertEqual(detect_cni(cluster, Provider.KIND), CNIPlugin.FLANNEL)

    def test_no_signal_is_unknown(self):
        self.assertEqual(detect_cni(make_cluster(), Provider.KIND), CNIPlugin.UNKNOWN)

    def test_provider_defaults_used_late(self):
        cluster = make_cluster(nodes=[make_node(labels={"kubernetes.azure.com/network-plugin": "azure"})])
        self.assertEqual(detect_cni(cluster, Provider.AKS), CNIPlugin.AZURE_CNI)


class TestEnvironmentDetails(unittest.TestCase):

    def test_cni_version_from_image(self):
        cluster = make_cluster(images={"calico-kube-controllers": "docker.io/calico/kube-controllers:v3.26.1"})
        self.assertEqual(get_cni_version(cluster, CNIPlugin.CALICO), "v3.26.1")

    def test_cni_version_falls_back_to_later_source(self):
        cluster = make_cluster(images={"cilium-agent": "quay.io/cilium/cilium:v1.14.2@sha256:abc"})
        self.assertEqual(get_cni_version(cluster, CNIPlugin.CILIUM), "v1.14.2")

    def test_weave_version_has_no_prefix(self):
        cluster = make_cluster(images={"weave-net": "weaveworks/weave-kube:2.8.1"})
        self.assertEqual(get_cni_version(cluster, CNIPlugin.WEAVE), "2.8.1")

    def test_gcp_cni_uses_cluster_version(self):
        cluster = make_cluster(version="v1.27.3-gke.100")
        self.assertEqual(get_cni_version(cluster, CNIPlugin.GCP_CNI), "v1.27.3-gke.100")

    def test_missing_version_is_unknown(self):
        self.assertEqual(get_cni_version(make_cluster(), CNIPlugin.FLANNEL), "unknown")
        self.assertEqual(get_cni_version(make_cluster(), CNIPlugin.UNKNOWN), "unknown")

    def test_cluster_name(self):
        cases = [
            (Provider.GKE, "gke_my-project_us-central1_prod", "prod"),
            (Provider.EKS, "admin@demo.us-east-1.eksctl.io", "demo.us-east-1.eksctl.io"),
            (Provider.EKS, "arn:aws:eks:us-east-1:123456789012:cluster/demo", "demo"),
            (Provider.KIND, "kind-dev", "dev"),
            (Provider.MINIKUBE, "minikube", "minikube"),
            (Provider.GKE, "not-a-gke-context", "unknown"),
        ]
        for provider, context, expected in cases:
            self.assertEqual(get_cluster_name(make_cluster(context=context), provider), expected, context)

    def test_cluster_region(self):
        gke_node = make_node(labels={"topology.kubernetes.io/region": "us-central1"})
        self.assertEqual(get_cluster_region(make_cluster(nodes=[gke_node]), Provider.GKE), "us-central1")
        self.assertEqual(get_cluster_region(make_cluster(nodes=[make_node()]), Provider.EKS), "unknown")
        self.assertEqual(get_cluster_region(make_cluster(nodes=[gke_node]), Provider.KIND), "local")

    def test_environment_report(self):
        cluster = make_cluster(
            context="kind-dev",
            nodes=[make_node(), make_node(name="node-2")],
            images={"calico-node": "calico/node:v3.25.0"},
            version="v1.28.0",
        )
        report = generate_environment_report(cluster, Provider.KIND, CNIPlugin.CALICO)

        self.assertEqual(report['provider'], "kind")
        self.assertEqual(report['cni'], {'name': "calico", 'version': "v3.25.0"})
        self.assertEqual(report['kubernetes']['version'], "v1.28.0")
        self.assertEqual(report['cluster'], {'name': "dev", 'region': "local", 'node_count': 2})
        self.assertIn('detection_timestamp', report)

    def test_network_policy_support(self):
        self.assertTrue(check_network_policy_support(make_cluster(netpol_api=True)))
        self.assertFalse(check_network_policy_support(make_cluster(netpol_api=False)))

    def test_server_version_error_is_unknown(self):
        cluster = make_cluster()
        cluster.server_version.side_effect = ApiException(status=500, reason="Internal Server Error")
        report = generate_environment_report(cluster, Provider.KIND, CNIPlugin.FLANNEL)
        self.assertEqual(report['kubernetes']['version'], "unknown")


if __name__ == '__main__':
    unittest.main()
