from __future__ import annotations

from unittest import TestCase
from unittest.mock import patch

from sqlalchemy import event

from archive_fixtures import at, build_archive, build_stack, seed_point, seed_unit
from historian_query.core.errors import NotFoundError
from historian_query.services.formatter import ValueFormatter
from historian_query.services.queries import CountSpec, InstantList, SummarySpec, TimeRange, flatten_results
from historian_query.services.reference import ReferenceDataService
from historian_query.services.values import NO_DATA, CategoricalValue


class ArchiveQueryTestCase(TestCase):
    def setUp(self) -> None:
        self.session_factory = build_archive()
        seed_point(
            self.session_factory,
            name="BC.X.PV",
            values=[(0, 10.0), (10, 20.0), (20, -5.0), (30, 40.0), (40, 50.0), (60, 0.0)],
        )
        seed_point(self.session_factory, name="BC.Y.PV", values=[(0, 1.0), (30, 2.0), (60, 3.0)])
        seed_point(
            self.session_factory,
            name="BC.HCLCONV.FIC1420.MODE",
            point_type="digital",
            values=[(0, CategoricalValue(label="AUTO", code=1)), (30, CategoricalValue(label="MAN", code=0))],
        )
        seed_point(self.session_factory, name="BC.FLAG", point_type="boolean", values=[(0, True), (30, False)])
        seed_point(self.session_factory, name="BC.COUNT", point_type="int32", values=[(0, 1), (10, 4)])
        self.connection, self.resolver, self.engine = build_stack(self.session_factory)
        self.formatter = ValueFormatter()

    def tearDown(self) -> None:
        self.connection.disconnect()


class RawQueryTests(ArchiveQueryTestCase):
    def test_raw_range_is_inclusive_and_chronological(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_raw(tag, at(10), at(40))

        self.assertEqual([sample.timestamp for sample in samples], [at(10), at(20), at(30), at(40)])
        self.assertEqual([sample.value for sample in samples], [20.0, -5.0, 40.0, 50.0])
        self.assertTrue(all(sample.kind == "float" for sample in samples))

    def test_raw_range_between_values_is_empty_not_none(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        self.assertEqual(self.engine.query_raw(tag, at(41), at(59)), [])

    def test_raw_range_with_filter_expression(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_raw(tag, at(0), at(60), filter_expression="'.' >= 0")

        self.assertEqual([sample.value for sample in samples], [10.0, 20.0, 40.0, 50.0, 0.0])

    def test_raw_range_rejects_inverted_range(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        with self.assertRaises(ValueError):
            self.engine.query_raw(tag, at(10), at(0))

    def test_by_count_forward_starts_at_anchor(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_raw_by_count(tag, at(15), 2, forward=True)

        self.assertEqual([sample.timestamp for sample in samples], [at(20), at(30)])

    def test_by_count_anchor_on_a_value_includes_it(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_raw_by_count(tag, at(10), 1)

        self.assertEqual([sample.value for sample in samples], [20.0])

    def test_by_count_backward_walks_back_in_time(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_raw_by_count(tag, at(15), 2, forward=False)

        self.assertEqual([sample.timestamp for sample in samples], [at(10), at(0)])

    def test_by_count_under_supply_returns_what_exists(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_raw_by_count(tag, at(50), 5)

        self.assertEqual([sample.timestamp for sample in samples], [at(60)])

    def test_by_count_zero_and_negative(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        self.assertEqual(self.engine.query_raw_by_count(tag, at(0), 0), [])
        with self.assertRaises(ValueError):
            self.engine.query_raw_by_count(tag, at(0), -1)

    def test_query_dispatches_on_time_spec(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        self.assertEqual(len(self.engine.query(tag, TimeRange(start=at(10), end=at(20)))), 2)
        self.assertEqual(len(self.engine.query(tag, CountSpec(anchor=at(0), count=3))), 3)
        self.assertEqual(self.engine.query(tag, InstantList(times=(at(5),)))[0].value, 15.0)


class InterpolatedQueryTests(ArchiveQueryTestCase):
    def test_interpolated_range_has_fixed_spacing(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_interpolated(tag, at(0), at(60), 900)

        self.assertEqual([sample.timestamp for sample in samples], [at(0), at(15), at(30), at(45), at(60)])
        expected = [10.0, 7.5, 40.0, 37.5, 0.0]
        for sample, value in zip(samples, expected):
            self.assertAlmostEqual(sample.value, value)

    def test_interpolated_count_is_floor_plus_one(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_interpolated(tag, at(0), at(50), 900)

        self.assertEqual(len(samples), 4)

    def test_filter_removes_values_before_interpolation(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_interpolated(tag, at(15), at(15), 60, filter_expression="'.' >= 0")

        self.assertAlmostEqual(samples[0].value, 25.0)

    def test_filter_also_applies_to_bracketing_values(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_interpolated(tag, at(21), at(21), 60, filter_expression="'.' >= 0")

        self.assertAlmostEqual(samples[0].value, 31.0)

    def test_interpolated_before_history_is_no_data(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_interpolated(tag, at(-30), at(0), 900)

        self.assertEqual(samples[0].kind, "categorical")
        self.assertIs(samples[0].value, NO_DATA)
        self.assertFalse(samples[0].good)
        self.assertEqual(self.formatter.format(samples[0]), "No Data")
        self.assertEqual(samples[-1].value, 10.0)

    def test_interval_must_be_positive(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        with self.assertRaises(ValueError):
            self.engine.query_interpolated(tag, at(0), at(60), 0)

    def test_at_times_preserves_input_order_and_length(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")
        times = [at(45), at(5), at(45), at(-10)]

        samples = self.engine.query_interpolated_at_times(tag, times)

        self.assertEqual([sample.timestamp for sample in samples], times)
        self.assertAlmostEqual(samples[0].value, 37.5)
        self.assertAlmostEqual(samples[1].value, 15.0)
        self.assertAlmostEqual(samples[2].value, 37.5)
        self.assertIs(samples[3].value, NO_DATA)

    def test_at_times_with_no_times_is_empty(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        self.assertEqual(self.engine.query_interpolated_at_times(tag, []), [])

    def test_digital_points_hold_previous_state(self) -> None:
        tag = self.resolver.resolve("BC.HCLCONV.FIC1420.MODE")

        samples = self.engine.query_interpolated(tag, at(0), at(30), 900)

        self.assertEqual([self.formatter.format(sample) for sample in samples], ["AUTO", "AUTO", "MAN"])
        self.assertTrue(all(sample.kind == "categorical" for sample in samples))

    def test_boolean_and_integer_kinds(self) -> None:
        flag = self.resolver.resolve("BC.FLAG")
        count = self.resolver.resolve("BC.COUNT")

        flag_samples = self.engine.query_interpolated_at_times(flag, [at(10), at(40)])
        count_samples = self.engine.query_interpolated_at_times(count, [at(6)])

        self.assertEqual([self.formatter.format(sample) for sample in flag_samples], ["TRUE", "FALSE"])
        self.assertEqual(count_samples[0].kind, "integer")
        self.assertEqual(self.formatter.format(count_samples[0]), "3")


class FilteredBracketSearchTests(TestCase):
    def test_bracket_search_reads_rows_in_batches(self) -> None:
        session_factory = build_archive()
        history = [(-500, -1.0)] + [(minute, 1.0 + minute) for minute in range(3000)]
        seed_point(session_factory, name="BC.LONG.PV", values=history)
        connection, resolver, engine = build_stack(session_factory)
        self.addCleanup(connection.disconnect)
        tag = resolver.resolve("BC.LONG.PV")

        statements: list[str] = []

        def record(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        bind = session_factory.kw["bind"]
        event.listen(bind, "before_cursor_execute", record)
        self.addCleanup(event.remove, bind, "before_cursor_execute", record)

        samples = engine.query_interpolated(tag, at(100), at(101), 60, filter_expression="'.' < 0")

        self.assertEqual([sample.value for sample in samples], [-1.0, -1.0])
        self.assertLess(len(statements), 15)


class SummaryQueryTests(ArchiveQueryTestCase):
    def test_time_weighted_average_per_bucket(self) -> None:
        tag = self.resolver.resolve("BC.Y.PV")

        samples = self.engine.query_summary(tag, at(0), at(60), SummarySpec(duration_seconds=1800))

        self.assertEqual([sample.timestamp for sample in samples], [at(0), at(30)])
        self.assertAlmostEqual(samples[0].value, 1.5)
        self.assertAlmostEqual(samples[1].value, 2.5)
        self.assertEqual(self.formatter.format(samples[0]), "1.50")

    def test_count_summary_is_integer(self) -> None:
        tag = self.resolver.resolve("BC.X.PV")

        samples = self.engine.query_summary(
            tag,
            at(0),
            at(60),
            SummarySpec(duration_seconds=3600, summary_type="count", calculation_basis="event_weighted"),
        )

        self.assertEqual(samples[0].kind, "integer")
        self.assertEqual(samples[0].value, 6)

    def test_invalid_summary_spec(self) -> None:
        with self.assertRaises(ValueError):
            SummarySpec(duration_seconds=0)
        with self.assertRaises(ValueError):
            SummarySpec(duration_seconds=60, summary_type="median")  # type: ignore[arg-type]


class MultiTagQueryTests(ArchiveQueryTestCase):
    def test_returns_results_per_tag_in_request_order(self) -> None:
        results = self.engine.query_interpolated_multi(["BC.Y.PV", "BC.X.PV"], at(0), at(60), 1800)

        self.assertEqual(list(results), ["BC.Y.PV", "BC.X.PV"])
        self.assertEqual([sample.value for sample in results["BC.Y.PV"]], [1.0, 2.0, 3.0])
        self.assertEqual([sample.value for sample in results["BC.X.PV"]], [10.0, 40.0, 0.0])
        self.assertEqual(len(flatten_results(results)), 6)

    def test_path_placeholder_is_substituted_per_tag(self) -> None:
        handle = self.resolver.resolve("BC.X.PV")

        results = self.engine.query_interpolated_multi(
            [handle, "BC.Y.PV"],
            at(15),
            at(15),
            60,
            filter_expression="'{path}' >= 0",
        )

        self.assertAlmostEqual(results["BC.X.PV"][0].value, 25.0)
        self.assertAlmostEqual(results["BC.Y.PV"][0].value, 1.5)

    def test_unknown_tag_fails_before_any_query(self) -> None:
        transport = self.connection.transport

        with patch.object(transport, "interpolated_values", wraps=transport.interpolated_values) as spy:
            with self.assertRaises(NotFoundError):
                self.engine.query_interpolated_multi(["BC.X.PV", "BC.NOPE"], at(0), at(60), 1800)

        spy.assert_not_called()


class UnitsOfMeasureTests(TestCase):
    def setUp(self) -> None:
        self.session_factory = build_archive()
        seed_unit(self.session_factory, name="meter", abbreviation="m", uom_class="Length")
        seed_unit(self.session_factory, name="degree Celsius", abbreviation="degC", uom_class="Temperature")
        seed_unit(self.session_factory, name="furlong", abbreviation="fur", uom_class="Length", deleted=True)
        self.connection, _, _ = build_stack(self.session_factory)
        self.service = ReferenceDataService(connection=self.connection)

    def tearDown(self) -> None:
        self.connection.disconnect()

    def test_raw_fetch_includes_deleted_units(self) -> None:
        units = self.service.list_units_of_measure()

        self.assertEqual(len(units), 3)
        self.assertIn("furlong", [unit.name for unit in units])

    def test_display_list_excludes_deleted_units(self) -> None:
        units = self.service.list_display_units()

        self.assertEqual(sorted(unit.name for unit in units), ["degree Celsius", "meter"])
        self.assertTrue(all(not unit.deleted for unit in units))
