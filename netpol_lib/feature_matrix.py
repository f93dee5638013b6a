"""
Feature matrix for CNI plugins

Maps NetworkPolicy features to the support level each CNI plugin offers, and
maps each NetworkPolicy recipe to the feature it exercises. Everything here is
a static table plus pure lookups; nothing touches the cluster.
"""

# Standard library imports
import logging
import re
from datetime import datetime
from enum import Enum

# Local imports
from .cloud_detection import CNIPlugin, Provider

# Set up module logger
log = logging.getLogger("netpol-planner.feature_matrix")


class Feature(str, Enum):
    INGRESS_RULES = "ingress_rules"
    EGRESS_RULES = "egress_rules"
    NAMESPACE_SELECTORS = "namespace_selectors"
    POD_SELECTORS = "pod_selectors"
    IP_BLOCKS = "ip_blocks"
    PORT_RANGES = "port_ranges"
    NAMED_PORTS = "named_ports"
    SCTP_PROTOCOL = "sctp_protocol"
    DENY_ALL = "deny_all"

    def __str__(self):
        return self.value


class SupportLevel(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"
    UNKNOWN = "unknown"

    def __str__(self):
        return self.value


F = Feature
FULL, PARTIAL, NONE = SupportLevel.FULL, SupportLevel.PARTIAL, SupportLevel.NONE


def _all(level):
    return {feature: level for feature in Feature}


def _full_except(**overrides):
    row = _all(FULL)
    row.update({Feature(name): level for name, level in overrides.items()})
    return row


FEATURE_MATRIX = {
    CNIPlugin.CALICO: _all(FULL),
    CNIPlugin.CILIUM: _all(FULL),
    CNIPlugin.WEAVE: _full_except(sctp_protocol=PARTIAL),
    CNIPlugin.FLANNEL: _all(NONE),
    CNIPlugin.VPC_CNI: {
        F.INGRESS_RULES: PARTIAL,
        F.EGRESS_RULES: PARTIAL,
        F.NAMESPACE_SELECTORS: PARTIAL,
        F.POD_SELECTORS: PARTIAL,
        F.IP_BLOCKS: FULL,
        F.PORT_RANGES: PARTIAL,
        F.NAMED_PORTS: PARTIAL,
        F.SCTP_PROTOCOL: NONE,
        F.DENY_ALL: PARTIAL,
    },
    CNIPlugin.AZURE_CNI: _full_except(sctp_protocol=PARTIAL),
    CNIPlugin.GCP_CNI: _full_except(sctp_protocol=PARTIAL),
    CNIPlugin.KUBE_ROUTER: _full_except(sctp_protocol=PARTIAL),
}

FEATURE_DETAILS = {
    (CNIPlugin.VPC_CNI, F.INGRESS_RULES): "Partial: Requires security group configuration for full support",
    (CNIPlugin.VPC_CNI, F.EGRESS_RULES): "Partial: Limited by VPC routing and security groups",
    (CNIPlugin.VPC_CNI, F.IP_BLOCKS): "Full: Works well with VPC CIDR blocks",
    (CNIPlugin.WEAVE, F.SCTP_PROTOCOL): "Partial: SCTP support may require kernel module",
}
FLANNEL_DETAILS = "None: Flannel requires additional CNI plugin for NetworkPolicy support"

# Minimum Kubernetes minor versions for features that were not always GA
K8S_MIN_VERSIONS = {
    "sctp_protocol": (1, 20),
    "endPort": (1, 22),
}

# Recipe ID -> (required feature, whether partial support is acceptable)
RECIPE_REQUIREMENTS = {
    "01": (F.DENY_ALL, False),
    "02": (F.DENY_ALL, False),
    "02a": (F.DENY_ALL, False),
    "03": (F.NAMESPACE_SELECTORS, False),
    "04": (F.NAMESPACE_SELECTORS, False),
    "05": (F.NAMESPACE_SELECTORS, False),
    "06": (F.NAMESPACE_SELECTORS, False),
    "07": (F.POD_SELECTORS, False),
    "08": (F.IP_BLOCKS, False),
    "09": (F.PORT_RANGES, True),
    "10": (F.PORT_RANGES, True),
    "11": (F.EGRESS_RULES, True),
    "12": (F.EGRESS_RULES, True),
    "13": (F.POD_SELECTORS, False),
    "14": (F.EGRESS_RULES, True),
}
RECIPE_IDS = tuple(RECIPE_REQUIREMENTS)

PROVIDER_TIMEOUTS = {
    Provider.GKE: 90,
    Provider.EKS: 90,
    Provider.AKS: 90,
}
PROVIDER_WORKERS = {
    Provider.GKE: 8,
    Provider.EKS: 8,
    Provider.AKS: 8,
    Provider.MINIKUBE: 2,
}
DEFAULT_TIMEOUT = 60
DEFAULT_WORKERS = 4


def parse_feature(name):
    """
    Map a feature name to the Feature enum.

    Raises:
        ValueError: For names outside the fixed feature set
    """
    try:
        return Feature(name)
    except ValueError:
        raise ValueError(f"Unknown NetworkPolicy feature: {name!r}") from None


def get_support(cni, feature):
    """
    Get the support level a CNI plugin offers for a feature.

    Args:
        cni (CNIPlugin or str): CNI plugin; unrecognised names are treated as unknown
        feature (Feature or str): Feature from the fixed feature set

    Returns:
        SupportLevel: Support level, SupportLevel.UNKNOWN for unknown CNIs
    """
    feature = parse_feature(feature)
    row = FEATURE_MATRIX.get(CNIPlugin.parse(cni), {})
    return row.get(feature, SupportLevel.UNKNOWN)


def get_details(cni, feature):
    """Get a human-readable caveat for a CNI/feature pair."""
    cni = CNIPlugin.parse(cni)
    feature = parse_feature(feature)
    if cni == CNIPlugin.FLANNEL:
        return FLANNEL_DETAILS
    return FEATURE_DETAILS.get((cni, feature), get_support(cni, feature).value)


def _minor_version(k8s_version):
    match = re.search(r"(\d+)\.(\d+)", k8s_version or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def check_k8s_version_support(feature, k8s_version):
    """
    Check whether a Kubernetes version supports a feature.

    SCTP went beta in 1.20 and endPort arrived in 1.22; everything else is GA.
    An unparseable version is treated as supporting the feature.
    """
    minimum = K8S_MIN_VERSIONS.get(str(feature))
    if minimum is None:
        return True
    version = _minor_version(k8s_version)
    if version is None:
        return True
    return version >= minimum


def get_recommended_timeout(provider):
    return PROVIDER_TIMEOUTS.get(Provider.parse(provider), DEFAULT_TIMEOUT)


def get_recommended_workers(provider):
    return PROVIDER_WORKERS.get(Provider.parse(provider), DEFAULT_WORKERS)


def is_recipe_supported(recipe_id, cni):
    """
    Check if a recipe can be meaningfully tested on a CNI plugin.

    Deny-all, namespace, pod-selector and ipBlock recipes need full support.
    Port and egress recipes run on anything but "none".

    Raises:
        ValueError: For recipe IDs outside the fixed recipe set
    """
    if recipe_id not in RECIPE_REQUIREMENTS:
        raise ValueError(f"Unknown recipe ID: {recipe_id!r}")
    feature, accept_partial = RECIPE_REQUIREMENTS[recipe_id]
    support = get_support(cni, feature)
    if accept_partial:
        return support != SupportLevel.NONE
    return support == SupportLevel.FULL


def get_supported_recipes(cni):
    return [recipe for recipe in RECIPE_IDS if is_recipe_supported(recipe, cni)]


def get_unsupported_recipes(cni):
    return [recipe for recipe in RECIPE_IDS if not is_recipe_supported(recipe, cni)]


def compatibility_score(cni):
    """Percentage of features with full support, rounded down."""
    full = sum(1 for feature in Feature if get_support(cni, feature) == SupportLevel.FULL)
    return full * 100 // len(Feature)


def generate_compatibility_report(provider, cni, cni_version="unknown", k8s_version="unknown"):
    """
    Generate a feature compatibility report for a provider/CNI pair.

    Args:
        provider (Provider): Cluster provider
        cni (CNIPlugin): CNI plugin
        cni_version (str): CNI version for the report header
        k8s_version (str): Kubernetes version, used for the k8s_compatible flags

    Returns:
        dict: Environment, recommendations, per-feature support and recipe partition
    """
    provider = Provider.parse(provider)
    cni = CNIPlugin.parse(cni)

    features = {}
    for feature in Feature:
        features[feature.value] = {
            'support': get_support(cni, feature).value,
            'k8s_compatible': check_k8s_version_support(feature, k8s_version),
            'details': get_details(cni, feature),
        }

    supported = get_supported_recipes(cni)
    unsupported = get_unsupported_recipes(cni)
    log.debug(f"{cni}: {len(supported)} supported, {len(unsupported)} unsupported recipes")

    return {
        'environment': {
            'provider': provider.value,
            'cni': cni.value,
            'cni_version': cni_version,
            'kubernetes_version': k8s_version,
            'compatibility_score': f"{compatibility_score(cni)}%",
        },
        'recommendations': {
            'timeout_seconds': get_recommended_timeout(provider),
            'parallel_workers': get_recommended_workers(provider),
        },
        'features': features,
        'recipes': {
            'supported': supported,
            'unsupported': unsupported,
            'total_supported': len(supported),
            'total_unsupported': len(unsupported),
        },
        'report_timestamp': datetime.now().astimezone().isoformat(timespec="seconds"),
    }
