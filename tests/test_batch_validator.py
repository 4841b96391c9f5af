"""
Tests del validador de batches de mediciones.

Ejecutar con: pytest tests/test_batch_validator.py -v

Tests incluidos:
1. Batches monótonos aceptados y par prev/last
2. Rechazos: asset/sitio vacío, batch vacío, timestamps, espesor
3. Parseo de puntos (JSON inválido, espesor <= 0)
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from corrosion_ingest.core.domain.measurement import (
    LastPoint,
    MeasurementPoint,
    build_points_json,
    parse_points_json,
)
from corrosion_ingest.core.errors import ValidationError
from corrosion_ingest.core.validation import validate_batch


# =============================================================================
# FIXTURES
# =============================================================================

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


def point(days: float, thickness: str, label: str = "P") -> MeasurementPoint:
    return MeasurementPoint.create(label, T0 + timedelta(days=days), thickness)


@pytest.fixture
def existing() -> LastPoint:
    return LastPoint(thickness=Decimal("10.0"), date=T0)


# =============================================================================
# TEST 1: BATCHES VÁLIDOS
# =============================================================================

class TestAcceptedBatches:
    """Batches monótonos aceptados."""

    def test_first_batch_without_history(self):
        """Sin historia: prev es el penúltimo punto del batch."""
        result = validate_batch(None, [point(0, "10.0"), point(30, "9.9")], "A-1", "anpz")

        assert result.is_valid
        assert result.reason == "OK"
        batch = result.unwrap()
        assert batch.site_id == "ANPZ"
        assert batch.prev == LastPoint(Decimal("10.0"), T0)
        assert batch.last == LastPoint(Decimal("9.9"), T0 + timedelta(days=30))

    def test_single_point_without_history_has_no_prev(self):
        batch = validate_batch(None, [point(0, "10.0")], "A-1", "ANPZ").unwrap()

        assert batch.prev is None
        assert batch.last.thickness == Decimal("10.0")

    def test_single_point_uses_existing_as_prev(self, existing):
        batch = validate_batch(existing, [point(10, "9.95")], "A-1", "ANPZ").unwrap()

        assert batch.prev == existing
        assert batch.last.date == T0 + timedelta(days=10)

    def test_equal_thickness_is_allowed(self, existing):
        result = validate_batch(existing, [point(1, "10.0"), point(2, "10.0")], "A-1", "ANPZ")
        assert result.is_valid


# =============================================================================
# TEST 2: RECHAZOS
# =============================================================================

class TestRejectedBatches:
    """Cada violación devuelve un código explícito y el índice del punto."""

    @pytest.mark.parametrize("asset", [None, "", "   "])
    def test_missing_asset_code(self, asset):
        result = validate_batch(None, [point(0, "10.0")], asset, "ANPZ")

        assert not result.is_valid
        assert result.reason == ValidationError.MISSING_ASSET_CODE
        with pytest.raises(ValidationError):
            result.unwrap()

    def test_missing_site_id(self):
        result = validate_batch(None, [point(0, "10.0")], "A-1", " ")
        assert result.reason == ValidationError.MISSING_SITE_ID

    def test_empty_batch(self):
        result = validate_batch(None, [], "A-1", "ANPZ")
        assert result.reason == ValidationError.EMPTY_BATCH

    def test_timestamp_equal_to_existing(self, existing):
        result = validate_batch(existing, [point(0, "9.9")], "A-1", "ANPZ")

        assert result.reason == ValidationError.NON_MONOTONIC_TIME
        assert result.error.index == 0

    def test_timestamp_regression_inside_batch(self):
        result = validate_batch(
            None, [point(0, "10.0"), point(5, "9.9"), point(3, "9.8")], "A-1", "ANPZ",
        )

        assert result.reason == ValidationError.NON_MONOTONIC_TIME
        assert result.error.index == 2

    def test_thickness_increase_against_existing(self, existing):
        result = validate_batch(existing, [point(1, "10.01")], "A-1", "ANPZ")

        assert result.reason == ValidationError.THICKNESS_INCREASED
        assert result.error.index == 0

    def test_thickness_increase_inside_batch(self):
        result = validate_batch(None, [point(0, "10.0"), point(1, "10.2")], "A-1", "ANPZ")
        assert result.reason == ValidationError.THICKNESS_INCREASED
        assert result.error.to_dict()["index"] == 1


# =============================================================================
# TEST 3: PARSEO DE PUNTOS
# =============================================================================

class TestPointParsing:
    """Normalización de puntos individuales."""

    def test_parse_points_json_keeps_order(self):
        raw = '[{"label": "a", "ts": "2024-03-02T00:00:00Z", "thickness": 9.9},' \
              ' {"label": "b", "ts": "2024-03-01T00:00:00Z", "thickness": "10.0"}]'
        points = parse_points_json(raw)

        assert [p.label for p in points] == ["a", "b"]
        assert points[0].taken_at.tzinfo is not None
        assert points[1].thickness == Decimal("10.0")

    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc:
            parse_points_json("[{not json")
        assert exc.value.code == ValidationError.INVALID_POINT

    @pytest.mark.parametrize("thickness", [0, -1, "abc", None])
    def test_invalid_thickness(self, thickness):
        with pytest.raises(ValidationError) as exc:
            parse_points_json([{"label": "x", "ts": "2024-03-01T00:00:00Z", "thickness": thickness}])
        assert exc.value.code == ValidationError.INVALID_POINT
        assert exc.value.index == 0

    def test_naive_timestamp_is_utc(self):
        p = MeasurementPoint.create("x", "2024-03-01T00:00:00", "1.5")
        assert p.taken_at == datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_build_points_json_sorts_by_timestamp(self):
        raw = build_points_json([point(5, "9.0", "late"), point(0, "10.0", "early")])
        assert [p.label for p in parse_points_json(raw)] == ["early", "late"]

    def test_build_points_json_empty(self):
        with pytest.raises(ValidationError) as exc:
            build_points_json([])
        assert exc.value.code == ValidationError.EMPTY_BATCH
