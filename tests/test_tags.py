from __future__ import annotations

from unittest import TestCase

from archive_fixtures import SERVER_NAME, build_archive, build_stack, seed_point
from historian_query.core.errors import NotFoundError
from historian_query.services.tags import build_tag_path, matches_name_filter, parse_tag_path


class TagPathTests(TestCase):
    def test_build_tag_path(self) -> None:
        self.assertEqual(build_tag_path("PISRV01", "BC.X.PV"), "\\\\Server[PISRV01]\\Point[BC.X.PV]")

    def test_parse_round_trips_built_path(self) -> None:
        path = build_tag_path("PISRV01", "BC.HCLCONV.FIC1420.MODE")

        self.assertEqual(parse_tag_path(path), ("PISRV01", "BC.HCLCONV.FIC1420.MODE"))

    def test_parse_accepts_pi_prefixed_spelling(self) -> None:
        self.assertEqual(parse_tag_path("\\\\PIServer[srv]\\PIPoint[BC.X.PV]"), ("srv", "BC.X.PV"))

    def test_malformed_paths_raise_value_error(self) -> None:
        for path in ("BC.X.PV", "\\\\Server[srv]", "\\Server[srv]\\Point[tag]", "\\\\Server[]\\Point[tag]"):
            with self.subTest(path=path):
                with self.assertRaises(ValueError):
                    parse_tag_path(path)

    def test_empty_parts_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            build_tag_path("", "BC.X.PV")


class NameFilterTests(TestCase):
    def test_suffix_wildcard_matches_only_suffix(self) -> None:
        self.assertTrue(matches_name_filter("BC.HCLCONV.FIC1420.MODE", "*.MODE"))
        self.assertFalse(matches_name_filter("BC.X.PV", "*.MODE"))

    def test_prefix_substring_and_single_character(self) -> None:
        self.assertTrue(matches_name_filter("BC.X.PV", "BC.*"))
        self.assertTrue(matches_name_filter("BC.HCLCONV.FIC1420.MODE", "*FIC14*"))
        self.assertTrue(matches_name_filter("TI101", "TI1?1"))
        self.assertFalse(matches_name_filter("TI1001", "TI1?1"))

    def test_match_is_case_insensitive(self) -> None:
        self.assertTrue(matches_name_filter("bc.x.mode", "*.MODE"))

    def test_regex_characters_are_literal(self) -> None:
        self.assertFalse(matches_name_filter("BCXPV", "BC.X.PV"))
        self.assertTrue(matches_name_filter("A+B(1)", "A+B(?)"))


class TagResolverTests(TestCase):
    def setUp(self) -> None:
        self.session_factory = build_archive()
        seed_point(self.session_factory, name="BC.HCLCONV.FIC1420.MODE", point_type="digital", source="OPC")
        seed_point(self.session_factory, name="BC.X.PV", source="OPC", engineering_units="degC")
        seed_point(self.session_factory, name="LAB.SAMPLE.MODE", point_type="string", source="LAB")
        self.connection, self.resolver, _ = build_stack(self.session_factory)

    def tearDown(self) -> None:
        self.connection.disconnect()

    def test_resolve_connects_lazily_and_builds_handle(self) -> None:
        self.assertFalse(self.connection.is_connected())

        handle = self.resolver.resolve("BC.X.PV")

        self.assertTrue(self.connection.is_connected())
        self.assertEqual(handle.name, "BC.X.PV")
        self.assertEqual(handle.path, build_tag_path(SERVER_NAME, "BC.X.PV"))
        self.assertEqual(handle.point_type, "float64")
        self.assertEqual(handle.engineering_units, "degC")
        self.assertFalse(handle.step)
        self.assertEqual(handle.generation, self.connection.generation)

    def test_resolve_is_case_insensitive(self) -> None:
        self.assertEqual(self.resolver.resolve("bc.x.pv").name, "BC.X.PV")

    def test_digital_points_are_step(self) -> None:
        self.assertTrue(self.resolver.resolve("BC.HCLCONV.FIC1420.MODE").step)

    def test_unknown_tag_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.resolver.resolve("BC.MISSING")

    def test_wildcard_is_not_treated_as_exact_name(self) -> None:
        with self.assertRaises(NotFoundError):
            self.resolver.resolve("BC.*")

    def test_find_by_filter_mode_suffix(self) -> None:
        handles = self.resolver.find_by_filter("*.MODE", "OPC")

        self.assertEqual([handle.name for handle in handles], ["BC.HCLCONV.FIC1420.MODE"])

    def test_find_by_filter_without_source_restriction(self) -> None:
        handles = self.resolver.find_by_filter("*.MODE")

        self.assertEqual([handle.name for handle in handles], ["BC.HCLCONV.FIC1420.MODE", "LAB.SAMPLE.MODE"])

    def test_find_by_filter_returns_empty_list_when_nothing_matches(self) -> None:
        self.assertEqual(self.resolver.find_by_filter("ZZ*"), [])

    def test_find_by_filter_pages_through_large_result_sets(self) -> None:
        for index in range(5):
            seed_point(self.session_factory, name=f"PAGE.{index:02d}")
        connection, resolver, _ = build_stack(self.session_factory, page_size=2)

        handles = resolver.find_by_filter("PAGE.*")

        self.assertEqual([handle.name for handle in handles], [f"PAGE.{index:02d}" for index in range(5)])
        connection.disconnect()

    def test_like_wildcards_in_names_are_literal(self) -> None:
        seed_point(self.session_factory, name="A_B")
        seed_point(self.session_factory, name="AXB")

        handles = self.resolver.find_by_filter("A_B")

        self.assertEqual([handle.name for handle in handles], ["A_B"])
