"""
Pure domain invariants: stage catalogs, lifecycle tables, value objects
and audit hashing.  No database; Hypothesis generates the inputs.
"""

from collections import deque
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from production_kernel.domain.sources import (
    DeliveryNoteSource,
    JobTarget,
    ProductionSource,
    source_from_ids,
    target_from_ids,
)
from production_kernel.domain.stage_catalog import StageCatalog
from production_kernel.domain.statuses import DefectSeverity
from production_kernel.domain.values import Defect, MaterialLine, ReturnItem, to_decimal
from production_kernel.domain.workflow import (
    JOB_CARD_WORKFLOW,
    RETURN_WORKFLOW,
    REWORK_JOB_WORKFLOW,
    Transition,
    Workflow,
    require_target,
    require_transition,
)
from production_kernel.exceptions import (
    InvalidSourceError,
    InvalidTransitionError,
    StageCatalogNotConfiguredError,
    UnknownStageError,
    ValidationError,
)
from production_kernel.utils.hashing import hash_payload

ALL_WORKFLOWS = [JOB_CARD_WORKFLOW, REWORK_JOB_WORKFLOW, RETURN_WORKFLOW]

stage_names = st.lists(
    st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ_", min_size=1, max_size=12),
    min_size=1,
    max_size=10,
    unique=True,
)

amounts = st.decimals(
    min_value=Decimal("-1000000"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


def _catalog(stages, non_inspected=()) -> StageCatalog:
    return StageCatalog(
        tenant_id=uuid4(),
        tenant_code="T",
        stages=tuple(stages),
        non_inspected_stages=frozenset(non_inspected),
    )


def _reachable(workflow: Workflow) -> set[str]:
    seen = {workflow.initial_state}
    queue = deque([workflow.initial_state])
    while queue:
        state = queue.popleft()
        for target in workflow.allowed_targets(state):
            if target not in seen:
                seen.add(target)
                queue.append(target)
    return seen


class TestStageCatalog:
    @given(stage_names)
    def test_successor_walk_visits_every_stage_in_order(self, stages):
        catalog = _catalog(stages)

        walked = [catalog.first]
        while (nxt := catalog.successor(walked[-1])) is not None:
            walked.append(nxt)

        assert walked == stages
        assert catalog.last == stages[-1]
        assert [catalog.is_last(s) for s in stages] == [False] * (len(stages) - 1) + [True]
        assert [catalog.index_of(s) for s in stages] == list(range(len(stages)))

    @given(st.data())
    def test_inspection_is_the_complement_of_the_exempt_set(self, data):
        stages = data.draw(stage_names)
        exempt = data.draw(st.sets(st.sampled_from(stages)))
        catalog = _catalog(stages, exempt)

        for stage in stages:
            assert catalog.requires_inspection(stage) is (stage not in exempt)

    def test_empty_catalog_is_not_configured(self):
        with pytest.raises(StageCatalogNotConfiguredError):
            _catalog(())

    def test_duplicate_stages_rejected(self):
        with pytest.raises(ValidationError):
            _catalog(("CUTTING", "CUTTING"))

    def test_exempt_stage_must_be_in_catalog(self):
        with pytest.raises(ValidationError):
            _catalog(("CUTTING",), ("PAINTING",))

    def test_unknown_stage(self):
        catalog = _catalog(("CUTTING", "QC"))
        assert "QC" in catalog
        with pytest.raises(UnknownStageError):
            catalog.successor("PAINTING")


class TestLifecycleTables:
    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_every_state_is_reachable(self, workflow):
        assert _reachable(workflow) == set(workflow.states)

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_only_terminal_states_are_dead_ends(self, workflow):
        for state in workflow.states:
            assert (not workflow.allowed_actions(state)) is workflow.is_terminal(state)

    @given(
        st.sampled_from(ALL_WORKFLOWS).flatmap(
            lambda w: st.tuples(
                st.just(w),
                st.sampled_from(w.states),
                st.sampled_from(sorted({t.action for t in w.transitions}) + ["teleport"]),
            )
        )
    )
    def test_require_transition_agrees_with_table(self, case):
        workflow, state, action = case
        expected = workflow.find(state, action)
        if expected is None:
            with pytest.raises(InvalidTransitionError):
                require_transition(
                    workflow, entity_type="X", entity_id=1, current=state, action=action
                )
        else:
            assert (
                require_transition(
                    workflow, entity_type="X", entity_id=1, current=state, action=action
                )
                == expected
            )

    def test_rework_cannot_skip_in_progress(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            require_target(
                REWORK_JOB_WORKFLOW,
                entity_type="ReworkJob",
                entity_id="r1",
                current="OPEN",
                target="COMPLETED",
            )
        assert exc_info.value.from_state == "OPEN"
        assert exc_info.value.to_state == "COMPLETED"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"initial_state": "Z", "states": ("A",), "transitions": ()},
            {"initial_state": "A", "states": ("A",), "transitions": (Transition("A", "B", "go"),)},
            {
                "initial_state": "A",
                "states": ("A", "B"),
                "transitions": (Transition("B", "A", "back"),),
                "terminal_states": ("B",),
            },
        ],
    )
    def test_malformed_tables_rejected(self, kwargs):
        with pytest.raises(ValueError):
            Workflow(name="bad", description="bad", **kwargs)


class TestValueObjects:
    @given(st.integers(min_value=-(10**12), max_value=10**12))
    def test_integers_convert_exactly(self, value):
        assert to_decimal(value, "qty") == Decimal(value)

    @given(amounts)
    def test_decimal_strings_convert_exactly(self, value):
        assert to_decimal(str(value), "qty") == value

    @pytest.mark.parametrize("raw", ["abc", "", "1,5", "--1", "NaN", "Infinity", None])
    def test_non_numbers_rejected(self, raw):
        with pytest.raises(ValidationError):
            to_decimal(raw, "qty")

    def test_defect_from_dict(self):
        defect = Defect.from_dict({"desc": "chipped edge", "severity": "LOW", "photoUrl": "p/1.jpg"})
        assert defect.severity == DefectSeverity.LOW
        assert defect.to_dict() == {"desc": "chipped edge", "severity": "LOW", "photo_ref": "p/1.jpg"}

    @pytest.mark.parametrize(
        "raw", [{"desc": "x", "severity": "FATAL"}, {"desc": "  ", "severity": "LOW"}]
    )
    def test_bad_defects_rejected(self, raw):
        with pytest.raises(ValidationError):
            Defect.from_dict(raw)

    def test_material_line_total(self):
        line = MaterialLine(item_id=uuid4(), qty=Decimal("4"), wastage=Decimal("0.5"))
        assert line.total_qty == Decimal("4.5")

    def test_return_item_needs_subject(self):
        with pytest.raises(ValidationError):
            ReturnItem.from_dict({"qty": "1"})


class TestSources:
    def test_exactly_one_source(self):
        job_id, note_id = uuid4(), uuid4()
        assert source_from_ids(job_id, None) == ProductionSource(job_id)
        assert source_from_ids(None, note_id) == DeliveryNoteSource(note_id)
        with pytest.raises(InvalidSourceError):
            source_from_ids(job_id, note_id)
        with pytest.raises(InvalidSourceError):
            source_from_ids(None, None)

    def test_exactly_one_material_target(self):
        job_id = uuid4()
        assert target_from_ids(production_job_id=job_id) == JobTarget(job_id)
        with pytest.raises(InvalidSourceError):
            target_from_ids()
        with pytest.raises(InvalidSourceError):
            target_from_ids(production_job_id=job_id, rework_job_id=uuid4())


class TestAuditHashing:
    @given(st.dictionaries(st.text(max_size=8), amounts, max_size=6))
    def test_key_order_does_not_matter(self, payload):
        reordered = dict(reversed(list(payload.items())))
        assert hash_payload(payload) == hash_payload(reordered)

    @given(amounts)
    def test_trailing_zeros_do_not_matter(self, value):
        padded = value.quantize(Decimal("0.0001"))
        assert hash_payload({"qty": value}) == hash_payload({"qty": padded})
