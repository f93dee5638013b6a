#!/usr/bin/env python3
"""
Tests for the CNI feature matrix and recipe support lookups.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from netpol_lib.cloud_detection import CNIPlugin, Provider
from netpol_lib.feature_matrix import (
    RECIPE_IDS,
    Feature,
    SupportLevel,
    check_k8s_version_support,
    compatibility_score,
    generate_compatibility_report,
    get_details,
    get_recommended_timeout,
    get_recommended_workers,
    get_support,
    get_supported_recipes,
    get_unsupported_recipes,
    is_recipe_supported,
    parse_feature,
)


class TestSupportLookup(unittest.TestCase):

    def test_every_known_cni_has_a_full_row(self):
        for cni in CNIPlugin:
            if cni == CNIPlugin.UNKNOWN:
                continue
            for feature in Feature:
                self.assertNotEqual(get_support(cni, feature), SupportLevel.UNKNOWN, (cni, feature))

    def test_unknown_cni_is_unknown_for_every_feature(self):
        for name in (CNIPlugin.UNKNOWN, "openshift-sdn", "", None):
            for feature in Feature:
                self.assertEqual(get_support(name, feature), SupportLevel.UNKNOWN)

    def test_sctp_support(self):
        self.assertEqual(get_support("calico", "sctp_protocol"), SupportLevel.FULL)
        self.assertEqual(get_support("vpc-cni", "sctp_protocol"), SupportLevel.NONE)
        self.assertEqual(get_support("weave", "sctp_protocol"), SupportLevel.PARTIAL)

    def test_flannel_supports_nothing(self):
        for feature in Feature:
            self.assertEqual(get_support(CNIPlugin.FLANNEL, feature), SupportLevel.NONE)

    def test_unknown_feature_name_raises(self):
        with self.assertRaises(ValueError):
            parse_feature("l7_rules")
        with self.assertRaises(ValueError):
            get_support("calico", "l7_rules")

    def test_details(self):
        self.assertIn("security group", get_details("vpc-cni", "ingress_rules"))
        self.assertIn("kernel module", get_details("weave", "sctp_protocol"))
        self.assertIn("additional CNI plugin", get_details("flannel", "egress_rules"))
        self.assertEqual(get_details("calico", "ip_blocks"), "full")


class TestRecipeSupport(unittest.TestCase):

    def test_deny_all_recipe(self):
        self.assertFalse(is_recipe_supported("01", "flannel"))
        self.assertTrue(is_recipe_supported("01", "calico"))

    def test_partition_is_total_and_disjoint(self):
        for cni in list(CNIPlugin) + ["openshift-sdn"]:
            supported = set(get_supported_recipes(cni))
            unsupported = set(get_unsupported_recipes(cni))
            self.assertEqual(supported | unsupported, set(RECIPE_IDS), cni)
            self.assertFalse(supported & unsupported, cni)

    def test_vpc_cni_accepts_partial_only_for_port_and_egress(self):
        self.assertEqual(get_supported_recipes("vpc-cni"), ["08", "09", "10", "11", "12", "14"])
        self.assertEqual(
            get_unsupported_recipes("vpc-cni"),
            ["01", "02", "02a", "03", "04", "05", "06", "07", "13"],
        )

    def test_full_support_cnis_run_everything(self):
        for cni in ("calico", "cilium", "weave", "azure-cni", "gcp-cni", "kube-router"):
            self.assertEqual(get_supported_recipes(cni), list(RECIPE_IDS), cni)

    def test_unknown_recipe_raises(self):
        with self.assertRaises(ValueError):
            is_recipe_supported("99", "calico")
        with self.assertRaises(ValueError):
            is_recipe_supported("00", "calico")


class TestVersionsAndRecommendations(unittest.TestCase):

    def test_k8s_version_gates(self):
        self.assertFalse(check_k8s_version_support("sctp_protocol", "v1.19.3"))
        self.assertTrue(check_k8s_version_support("sctp_protocol", "v1.20.0"))
        self.assertFalse(check_k8s_version_support("endPort", "1.21"))
        self.assertTrue(check_k8s_version_support("endPort", "v1.28.2-eks-1234"))
        self.assertTrue(check_k8s_version_support(Feature.INGRESS_RULES, "v1.10.0"))
        self.assertTrue(check_k8s_version_support("sctp_protocol", "unknown"))

    def test_recommended_timeout(self):
        self.assertEqual(get_recommended_timeout("gke"), 90)
        self.assertEqual(get_recommended_timeout("kind"), 60)
        self.assertEqual(get_recommended_timeout("unknown"), 60)

    def test_recommended_workers(self):
        self.assertEqual(get_recommended_workers(Provider.EKS), 8)
        self.assertEqual(get_recommended_workers(Provider.MINIKUBE), 2)
        self.assertEqual(get_recommended_workers(Provider.K3S), 4)

    def test_compatibility_score(self):
        self.assertEqual(compatibility_score("calico"), 100)
        self.assertEqual(compatibility_score("weave"), 88)
        self.assertEqual(compatibility_score("vpc-cni"), 11)
        self.assertEqual(compatibility_score("flannel"), 0)
        self.assertEqual(compatibility_score("unknown"), 0)


class TestCompatibilityReport(unittest.TestCase):

    def test_report_shape(self):
        report = generate_compatibility_report("eks", "vpc-cni", "v1.15.0", "v1.19.0")

        self.assertEqual(report['environment']['provider'], "eks")
        self.assertEqual(report['environment']['cni'], "vpc-cni")
        self.assertEqual(report['environment']['cni_version'], "v1.15.0")
        self.assertEqual(report['environment']['compatibility_score'], "11%")
        self.assertEqual(report['recommendations'], {'timeout_seconds': 90, 'parallel_workers': 8})
        self.assertEqual(set(report['features']), {feature.value for feature in Feature})
        self.assertEqual(report['features']['sctp_protocol']['support'], "none")
        self.assertFalse(report['features']['sctp_protocol']['k8s_compatible'])
        self.assertEqual(report['recipes']['total_supported'] + report['recipes']['total_unsupported'],
                         len(RECIPE_IDS))
        self.assertIn('report_timestamp', report)


if __name__ == '__main__':
    unittest.main()
