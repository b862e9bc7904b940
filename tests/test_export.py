from datetime import datetime, timezone

from job_scanner.core.export import (
    EXPORT_FILENAME,
    HEADERS,
    format_timestamp,
    parse_display_timestamp,
    read_csv,
    write_csv,
)
from job_scanner.core.models import ApplicationRecord


def _local(year, month, day, hour, minute, second):
    return datetime(year, month, day, hour, minute, second).astimezone()


def test_csv_has_bom_and_header(tmp_path):
    path = write_csv([], tmp_path / EXPORT_FILENAME)
    raw = path.read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf")
    assert raw[3:].decode("utf-8") == ",".join(HEADERS) + "\n"


def test_fields_with_commas_and_quotes_are_quoted(tmp_path):
    record = ApplicationRecord(
        message_id="m1",
        company="Acme, Inc.",
        position='Engineer "II"',
        email_title="Thanks",
        email_date=_local(2024, 5, 1, 9, 30, 0),
        processed_timestamp=_local(2024, 5, 1, 10, 0, 0),
    )
    path = write_csv([record], tmp_path / "out.csv")
    line = path.read_text(encoding="utf-8-sig").splitlines()[1]
    assert '"Acme, Inc."' in line
    assert '"Engineer ""II"""' in line


def test_rows_read_back_match_records(tmp_path):
    record = ApplicationRecord(
        message_id="m7",
        company="Globex",
        position=None,
        email_title="Your application to Globex",
        email_date=_local(2024, 3, 9, 14, 5, 59),
        processed_timestamp=_local(2024, 3, 10, 8, 0, 1),
    )
    rows = read_csv(write_csv([record], tmp_path / "out.csv"))
    assert len(rows) == 1
    row = rows[0]
    assert list(row) == HEADERS
    assert row["company"] == "Globex"
    assert row["position"] == ""
    assert row["email_title"] == record.email_title
    assert row["message_id"] == "m7"
    assert row["email_date"] == "03-09-2024 14:05:59"
    assert parse_display_timestamp(row["email_date"]) == record.email_date.replace(tzinfo=None)
    assert parse_display_timestamp(row["processed_timestamp"]) == record.processed_timestamp.replace(tzinfo=None)


def test_every_field_survives_a_reread(tmp_path):
    records = [
        ApplicationRecord(
            message_id="m1",
            company="Acme",
            position="Engineer, Backend",
            email_title="Thanks for applying to Acme",
            email_date=_local(2024, 1, 5, 8, 0, 0),
            processed_timestamp=_local(2024, 1, 5, 9, 15, 30),
        ),
        ApplicationRecord(
            message_id="m2",
            company='Initech "Labs"',
            position="Analyst\nData",
            email_title='Re: "Your application", part 2',
            email_date=_local(2024, 2, 29, 23, 59, 59),
            processed_timestamp=_local(2024, 3, 1, 0, 0, 0),
        ),
        ApplicationRecord(
            message_id="m3",
            company="Globex",
            position="Site Reliability Engineer",
            email_title="Application received",
            email_date=_local(2024, 12, 31, 12, 30, 45),
            processed_timestamp=_local(2025, 1, 1, 6, 7, 8),
        ),
    ]
    rows = read_csv(write_csv(records, tmp_path / EXPORT_FILENAME))

    assert len(rows) == len(records)
    for row, record in zip(rows, records):
        assert row["message_id"] == record.message_id
        assert row["company"] == record.company
        assert row["position"] == record.position
        assert row["email_title"] == record.email_title
        assert parse_display_timestamp(row["email_date"]) == record.email_date.replace(tzinfo=None)
        assert parse_display_timestamp(row["processed_timestamp"]) == record.processed_timestamp.replace(tzinfo=None)


def test_format_timestamp_converts_to_local_time():
    value = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert format_timestamp(value) == value.astimezone().strftime("%m-%d-%Y %H:%M:%S")
    assert format_timestamp(None) == ""
    assert parse_display_timestamp("") is None
