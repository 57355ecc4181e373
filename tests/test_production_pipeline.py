"""Tests for multiplier stacking."""
from decimal import Decimal

from pixelsingularity.bignum import D, ZERO
from pixelsingularity.production_pipeline import ADDITIVE, Multiplier, ProductionPipeline


# ─────────────────────────────────────────────────────
# calculate
# ─────────────────────────────────────────────────────

class TestCalculate:
    def test_multiplicative_and_additive_stack(self, pipeline):
        pipeline.add_multiplier(id='double', value=2, resource_id='pixels')
        pipeline.add_multiplier(id='half_more', value='0.5', stacking=ADDITIVE, resource_id='pixels')
        assert pipeline.calculate('pixels', 10) == Decimal(30)

    def test_global_multipliers_apply_everywhere(self, pipeline):
        pipeline.add_multiplier(id='global', value=3)
        assert pipeline.calculate('red', 2) == D(6)

    def test_other_resources_are_untouched(self, pipeline):
        pipeline.add_multiplier(id='double', value=2, resource_id='pixels')
        assert pipeline.calculate('red', 5) == D(5)

    def test_non_positive_base_is_zero(self, pipeline):
        pipeline.add_multiplier(id='double', value=2)
        assert pipeline.calculate('pixels', 0) == ZERO
        assert pipeline.calculate('pixels', -5) == ZERO

    def test_inactive_and_failing_conditions_are_skipped(self, pipeline):
        pipeline.add_multiplier(id='off', value=10, active=False)

        def broken():
            raise RuntimeError("no state")

        pipeline.add_multiplier(id='broken', value=10, condition=broken)
        pipeline.add_multiplier(id='gated', value=2, condition=lambda: True)
        assert pipeline.calculate('pixels', 1) == D(2)

    def test_registration_order_does_not_matter(self, pipeline):
        multipliers = [
            Multiplier(id='late', value=3, priority=5, resource_id='pixels'),
            Multiplier(id='bonus', value='0.25', stacking=ADDITIVE),
            Multiplier(id='early', value='1.5', priority=-5),
            Multiplier(id='flat', value='0.75', stacking=ADDITIVE, resource_id='pixels'),
        ]
        reversed_pipeline = ProductionPipeline()
        for multiplier in multipliers:
            pipeline.add_multiplier(multiplier)
        for multiplier in reversed(multipliers):
            reversed_pipeline.add_multiplier(multiplier)

        # 10 x 3 x 1.5 x (1 + 0.25 + 0.75)
        assert pipeline.calculate('pixels', 10) == D(90)
        assert reversed_pipeline.calculate('pixels', 10) == D(90)
        assert pipeline.calculate('red', 10) == reversed_pipeline.calculate('red', 10) == D('18.75')

    def test_replacing_by_id(self, pipeline):
        pipeline.add_multiplier(id='m', value=2)
        pipeline.add_multiplier(Multiplier(id='m', value=5))
        assert pipeline.calculate('pixels', 1) == D(5)


# ─────────────────────────────────────────────────────
# Queries and bookkeeping
# ─────────────────────────────────────────────────────

class TestBookkeeping:
    def test_breakdown(self, pipeline):
        pipeline.add_multiplier(id='a', value=2, priority=5)
        pipeline.add_multiplier(id='b', value='0.25', stacking=ADDITIVE, priority=1)
        breakdown = pipeline.get_breakdown('pixels', 4)
        assert breakdown.multiplicative_factor == D(2)
        assert breakdown.additive_bonus == D('0.25')
        assert breakdown.final == D(10)
        assert [m.id for m in breakdown.active_multipliers] == ['b', 'a']

    def test_combined_multiplier(self, pipeline):
        pipeline.add_multiplier(id='a', value=2)
        pipeline.add_multiplier(id='b', value=1, stacking=ADDITIVE)
        assert pipeline.get_combined_multiplier('pixels') == D(4)

    def test_clear_by_source(self, pipeline):
        pipeline.add_multiplier(id='a', source='upgrade')
        pipeline.add_multiplier(id='b', source='upgrade')
        pipeline.add_multiplier(id='c', source='eternal')
        assert pipeline.clear_by_source('upgrade') == 2
        assert pipeline.ids() == ['c']

    def test_update_and_toggle(self, pipeline):
        pipeline.add_multiplier(id='a', value=2)
        assert pipeline.update_multiplier_value('a', 3)
        assert pipeline.set_multiplier_active('a', False)
        assert not pipeline.update_multiplier_value('missing', 3)
        assert pipeline.calculate('pixels', 1) == D(1)
        assert pipeline.active_count() == 0

    def test_serialize_only_persisted_sources(self, pipeline):
        pipeline.add_multiplier(id='producer_x', value=2, source='producer')
        pipeline.add_multiplier(id='temp', value=9, source='temporary')
        data = pipeline.serialize()
        assert data == {'producer_x': {'value': '2', 'active': True}}

    def test_deserialize_updates_existing_only(self, pipeline):
        pipeline.add_multiplier(id='producer_x', value=2, source='producer')
        pipeline.deserialize({
            'producer_x': {'value': '4', 'active': False},
            'ghost': {'value': '9'},
        })
        assert pipeline.get_multiplier('producer_x').value == D(4)
        assert not pipeline.get_multiplier('producer_x').active
        assert not pipeline.has_multiplier('ghost')
