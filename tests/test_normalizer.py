"""Tests for upload row normalization."""

from datetime import UTC, datetime

import pandas as pd
import pytest

from clickmatch.conversions.normalizer import PurchaseNormalizer


class TestPurchaseNormalizer:
    """Test PurchaseNormalizer."""

    def test_alias_columns(self, sample_upload_rows):
        """Test alias column names map onto canonical fields."""
        normalizer = PurchaseNormalizer()

        purchases = normalizer.normalize(sample_upload_rows)

        assert normalizer.errors == []
        assert [p.order_id for p in purchases] == ["ORD-001", "ORD-002"]

        first = purchases[0]
        assert first.purchase_amount == 150.0
        assert first.purchase_date == datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
        assert first.normalized_email == "janedoe@gmail.com"
        assert first.normalized_phone == "+15125550100"
        assert first.city == "Austin"
        assert first.zip_code == "78701"

        second = purchases[1]
        assert second.purchase_amount == 75.5
        assert second.zip_code == "78702"
        assert second.city is None

    def test_dataframe_input(self, sample_upload_rows):
        """Test DataFrames are accepted directly."""
        purchases = PurchaseNormalizer().normalize(pd.DataFrame(sample_upload_rows))

        assert len(purchases) == 2

    def test_spreadsheet_floats_become_strings(self):
        """Test numeric ids, zips and phones lose their float suffix."""
        df = pd.DataFrame([
            {"order_id": 1001.0, "amount": 20, "date": "2025-03-01", "zip": 78701.0, "phone": 5125550100.0},
        ])

        purchase = PurchaseNormalizer().normalize(df)[0]

        assert purchase.order_id == "1001"
        assert purchase.zip_code == "78701"
        assert purchase.normalized_phone == "+15125550100"

    def test_pandas_timestamps(self):
        """Test parsed datetime columns are accepted."""
        df = pd.DataFrame([{"order_id": "A", "amount": 10, "date": "2025-03-01 08:00:00"}])
        df["date"] = pd.to_datetime(df["date"])

        purchase = PurchaseNormalizer().normalize(df)[0]

        assert purchase.purchase_date == datetime(2025, 3, 1, 8, 0, tzinfo=UTC)

    def test_invalid_rows_skipped_and_recorded(self):
        """Test bad rows are reported with their index."""
        rows = [
            {"order_id": "A", "amount": 10, "date": "2025-03-01"},
            {"order_id": "B", "amount": "n/a", "date": "2025-03-01"},
            {"amount": 5, "date": "2025-03-01"},
            {"order_id": "D", "amount": -3, "date": "2025-03-01"},
            {"order_id": "E", "amount": 12, "date": "yesterday"},
        ]
        normalizer = PurchaseNormalizer()

        purchases = normalizer.normalize(rows)

        assert [p.order_id for p in purchases] == ["A"]
        assert [e.row_index for e in normalizer.errors] == [1, 2, 3, 4]
        assert "Invalid purchase_amount" in normalizer.errors[0].message
        assert "Missing required field: order_id" in normalizer.errors[1].message
        assert "must be positive" in normalizer.errors[2].message
        assert "Invalid purchase_date format" in normalizer.errors[3].message

    def test_non_finite_amount_strings_rejected(self):
        """Test "NaN" and "inf" amount text is reported instead of imported."""
        rows = [
            {"order_id": "A", "amount": "NaN", "date": "2025-03-01"},
            {"order_id": "B", "amount": "inf", "date": "2025-03-01"},
            {"order_id": "C", "amount": "19.99", "date": "2025-03-01"},
        ]
        normalizer = PurchaseNormalizer()

        purchases = normalizer.normalize(rows)

        assert [p.order_id for p in purchases] == ["C"]
        assert [e.row_index for e in normalizer.errors] == [0, 1]
        assert all("must be positive and finite" in e.message for e in normalizer.errors)

    def test_errors_reset_between_runs(self):
        """Test errors only describe the latest call."""
        normalizer = PurchaseNormalizer()
        normalizer.normalize([{"amount": 5, "date": "2025-03-01"}])
        assert len(normalizer.errors) == 1

        normalizer.normalize([{"order_id": "A", "amount": 5, "date": "2025-03-01"}])
        assert normalizer.errors == []

    def test_blank_values_fall_through_to_next_alias(self):
        """Test empty strings do not shadow a later alias column."""
        normalizer = PurchaseNormalizer()

        mapped = normalizer.map_row({"email": "  ", "Email": "jane@example.com", "order_id": "A"})

        assert mapped["email"] == "jane@example.com"

    def test_custom_field_map_takes_priority(self):
        """Test field_map columns are checked before built-in aliases."""
        normalizer = PurchaseNormalizer(field_map={"Sale Total": "purchase_amount"})

        mapped = normalizer.map_row({"Sale Total": "99.00", "amount": "1.00"})

        assert mapped["purchase_amount"] == "99.00"

    def test_unknown_target_field(self):
        """Test mapping onto an unknown field is rejected."""
        with pytest.raises(ValueError, match="Unknown purchase field: favorite_color"):
            PurchaseNormalizer(field_map={"Color": "favorite_color"})
