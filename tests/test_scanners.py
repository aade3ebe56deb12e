from altwatch.models import AssetMetadata, ContentRecord, FieldNode, RecordField, ScanScope
from altwatch.repository import InMemoryAssetRepository, InMemoryContentRepository
from altwatch.scan.content import ContentScanner
from altwatch.scan.media import MediaScanner

from conftest import image_asset


def _assets(count: int) -> InMemoryAssetRepository:
    repo = InMemoryAssetRepository()
    for asset_id in range(1, count + 1):
        repo.add(asset_id, image_asset(f"Descriptive alt number {asset_id}", f"file{asset_id}.jpg"))
    return repo


def _record(record_id: int, modified_at: str, image_id: int = 1) -> ContentRecord:
    return ContentRecord(
        id=record_id,
        title=f"Post {record_id}",
        content_type="post",
        modified_at=modified_at,
        fields=[RecordField(FieldNode(name="cover", kind="image"), image_id)],
    )


class FlakyAssets(InMemoryAssetRepository):
    """Lists ids it can no longer describe, like an asset deleted mid-scan."""

    def __init__(self, assets, gone=(), broken=()):
        super().__init__(assets)
        self.gone = set(gone)
        self.broken = set(broken)

    def get_asset_metadata(self, asset_id):
        if asset_id in self.broken:
            raise RuntimeError("metadata backend unavailable")
        if asset_id in self.gone:
            return None
        return super().get_asset_metadata(asset_id)


def test_media_batches_advance_by_items_consumed(rules):
    scanner = MediaScanner(_assets(7))
    first = scanner.scan_batch(0, 3, rules)
    assert [row.attachment_id for row in first.rows] == [1, 2, 3]
    assert (first.next_offset, first.total, first.done) == (3, 7, False)

    last = scanner.scan_batch(6, 3, rules)
    assert [row.attachment_id for row in last.rows] == [7]
    assert (last.next_offset, last.total, last.done) == (7, 7, True)


def test_media_scan_skips_non_images(rules):
    repo = _assets(2)
    repo.add(3, AssetMetadata(alt_text="", filename="a.pdf", mime_type="application/pdf", title="A"))
    result = MediaScanner(repo).scan_batch(0, 25, rules)
    assert [row.attachment_id for row in result.rows] == [1, 2]
    assert result.total == 2
    assert result.done


def test_media_scan_empty_library(rules):
    result = MediaScanner(InMemoryAssetRepository()).scan_batch(0, 25, rules)
    assert result.rows == []
    assert (result.next_offset, result.total, result.done) == (0, 0, True)


def test_deleted_asset_degrades_to_empty_row(rules):
    repo = FlakyAssets(
        {1: image_asset("Fine alt text here", "one.jpg"), 2: image_asset("x", "two.jpg"), 3: image_asset("y", "three.jpg")},
        gone={2},
        broken={3},
    )
    result = MediaScanner(repo).scan_batch(0, 25, rules)
    assert len(result.rows) == 3
    degraded = result.rows[1]
    assert degraded.attachment_id == 2
    assert degraded.file_name == ""
    assert degraded.alt_raw == ""
    assert degraded.issues == ["missing_alt"]
    assert result.rows[2].mime_type == ""
    assert result.next_offset == 3


def test_content_scope_all_orders_by_id(rules):
    records = [
        _record(3, "2025-03-01T00:00:00+00:00"),
        _record(1, "2025-05-01T00:00:00+00:00"),
        _record(2, "2025-01-01T00:00:00+00:00"),
    ]
    scanner = ContentScanner(InMemoryContentRepository(records), _assets(1))
    result = scanner.scan_batch(0, 5, ScanScope(kind="all"), rules)
    assert [row.container_id for row in result.rows] == [1, 2, 3]
    assert result.done


def test_content_most_recent_clamps_total_and_truncates(rules):
    records = [_record(i, f"2025-01-{i:02d}T00:00:00+00:00") for i in range(1, 13)]
    scanner = ContentScanner(InMemoryContentRepository(records), _assets(1))
    scope = ScanScope(kind="most_recent", count=5)

    first = scanner.scan_batch(0, 4, scope, rules)
    assert first.total == 5
    assert [row.container_id for row in first.rows] == [12, 11, 10, 9]
    assert first.next_offset == 4
    assert not first.done

    second = scanner.scan_batch(4, 4, scope, rules)
    assert [row.container_id for row in second.rows] == [8]
    assert second.next_offset == 5
    assert second.done


def test_content_most_recent_compares_instants_across_offsets(rules):
    records = [
        _record(1, "2025-01-01T23:00:00-05:00"),
        _record(2, "2025-01-02T01:00:00+00:00"),
        _record(3, None),
    ]
    scanner = ContentScanner(InMemoryContentRepository(records), _assets(1))

    result = scanner.scan_batch(0, 10, ScanScope(kind="most_recent", count=1), rules)

    assert [row.container_id for row in result.rows] == [1]
    assert result.done


def test_content_modified_within_filters_old_records(rules):
    records = [
        _record(1, "2001-01-01T00:00:00+00:00"),
        _record(2, "2999-01-01T00:00:00+00:00"),
        _record(3, None),
    ]
    scanner = ContentScanner(InMemoryContentRepository(records), _assets(1))
    result = scanner.scan_batch(0, 5, ScanScope(kind="modified_within", days=30), rules)
    assert result.total == 1
    assert [row.container_id for row in result.rows] == [2]


def test_content_cursor_counts_records_not_rows(rules):
    record = ContentRecord(
        id=1,
        title="Gallery post",
        content_type="post",
        modified_at=None,
        fields=[RecordField(FieldNode(name="gallery", kind="gallery"), [1, 2, 3])],
    )
    scanner = ContentScanner(InMemoryContentRepository([record]), _assets(3))
    result = scanner.scan_batch(0, 5, ScanScope(kind="all"), rules)
    assert len(result.rows) == 3
    assert result.next_offset == 1


def test_content_types_filter(rules):
    page = ContentRecord(id=9, title="Page", content_type="page", modified_at=None, fields=[])
    product = ContentRecord(id=10, title="Product", content_type="product", modified_at=None, fields=[])
    repo = InMemoryContentRepository([page, product], content_types=["page"])
    records, total = repo.list_content_records(0, 10, ScanScope(kind="all"))
    assert [record.id for record in records] == [9]
    assert total == 1
