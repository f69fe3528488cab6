"""Report result-sheet seeding and reconciliation.

A report's tests mirror its invoice's line items one-to-one. These pure
functions build fresh result entries from the live test catalog and align
an existing result sheet with a changed set of line items without losing
anything a technician already entered.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import replace
from typing import Any, Iterable, Mapping

from lims_core.domain.entities import (
    InvoiceTest,
    LabTest,
    ParameterResult,
    ParameterTemplate,
    ReportTest,
)
from lims_core.domain.records import coerce_fields, to_record


def seed_parameters(templates: Iterable[ParameterTemplate]) -> tuple[ParameterResult, ...]:
    return tuple(
        ParameterResult(name=t.name, normal_range=t.normal_range, unit=t.unit)
        for t in templates
    )


def seed_report_test(line_item: InvoiceTest, catalog_test: LabTest | None) -> ReportTest:
    """Build an empty result entry for a line item.

    Reference range, unit and parameters come from the current catalog,
    not from the invoice snapshot. A test missing from the catalog gets
    blank display fields.
    """
    if catalog_test is None:
        return ReportTest(test_id=line_item.test_id, test_name=line_item.test_name)
    return ReportTest(
        test_id=line_item.test_id,
        test_name=line_item.test_name,
        normal_range=catalog_test.reference_range,
        unit=catalog_test.unit,
        parameters=seed_parameters(catalog_test.parameters),
    )


def seed_report_tests(
    line_items: Iterable[InvoiceTest],
    catalog: Mapping[str, LabTest],
) -> tuple[ReportTest, ...]:
    return tuple(seed_report_test(item, catalog.get(item.test_id)) for item in line_items)


def reconcile_report_tests(
    existing: Iterable[ReportTest],
    line_items: Iterable[InvoiceTest],
    catalog: Mapping[str, LabTest],
) -> tuple[tuple[ReportTest, ...], list[str], list[str]]:
    """Align a result sheet with a new list of line items.

    Returns (tests, added_names, removed_names).

    - Entries whose test is still billed are kept unchanged.
    - Newly billed tests get a fresh empty entry.
    - Entries whose test is no longer billed are dropped.

    Ordering follows the line items. Duplicate line items for the same test
    consume existing entries in order before new ones are seeded.
    """
    available: dict[str, deque[ReportTest]] = defaultdict(deque)
    for entry in existing:
        available[entry.test_id].append(entry)

    tests: list[ReportTest] = []
    added: list[str] = []
    for item in line_items:
        queue = available.get(item.test_id)
        if queue:
            tests.append(queue.popleft())
        else:
            tests.append(seed_report_test(item, catalog.get(item.test_id)))
            added.append(item.test_name)

    kept_ids = {t.test_id for t in tests}
    removed = [
        entry.test_name
        for queue in available.values()
        for entry in queue
        if entry.test_id not in kept_ids
    ]
    return tuple(tests), added, removed


def reconcile_parameters(
    existing: Iterable[ParameterResult],
    templates: Iterable[ParameterTemplate],
) -> tuple[ParameterResult, ...]:
    """Refresh sub-results against the current parameter templates.

    Matching names get the template's normal range and unit (entered values
    and flags untouched). Templates with no sub-result are appended empty.
    Sub-results without a template are kept.
    """
    templates_by_name = {t.name: t for t in templates}
    refreshed: list[ParameterResult] = []
    seen: set[str] = set()
    for param in existing:
        template = templates_by_name.get(param.name)
        if template is not None:
            param = replace(param, normal_range=template.normal_range, unit=template.unit)
        refreshed.append(param)
        seen.add(param.name)
    for name, template in templates_by_name.items():
        if name not in seen:
            refreshed.append(
                ParameterResult(name=name, normal_range=template.normal_range, unit=template.unit)
            )
    return tuple(refreshed)


def has_critical(tests: Iterable[ReportTest]) -> bool:
    return any(t.is_critical for t in tests)


def apply_result_edits(
    existing: Iterable[ReportTest],
    edits: Iterable[Any],
) -> tuple[tuple[ReportTest, ...], list[str]]:
    """Merge result edits into the entries a report already has.

    Returns (tests, ignored_test_ids).

    Each edit (a mapping or a ReportTest) updates the next unedited entry
    with the same test_id; only the fields it carries change. Edits naming
    a test the report does not hold are ignored. The set of test ids and
    their order never change here: that follows the invoice.
    """
    tests = list(existing)
    pending: dict[str, deque[int]] = defaultdict(deque)
    for index, entry in enumerate(tests):
        pending[entry.test_id].append(index)

    ignored: list[str] = []
    for edit in edits:
        values = dict(edit) if isinstance(edit, Mapping) else to_record(edit)
        test_id = str(values.pop("test_id", ""))
        slots = pending.get(test_id)
        if not slots:
            ignored.append(test_id)
            continue
        index = slots.popleft()
        tests[index] = replace(tests[index], **coerce_fields(ReportTest, values))
    return tuple(tests), ignored
