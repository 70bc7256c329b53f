"""
Streamlit UI for the Enrollment Pricing Engine.

Features:
- Pricing calculator: student, class, subjects and siblings
- Breakdown of subjects, discounts and taxes with the resolution trace
- Snapshot lookup by id
- Reference data and rule status
"""
import streamlit as st
import pandas as pd
import json
from datetime import datetime

from enrollment_pricing.engine import PricingEngine, PricingRequest
from enrollment_pricing.engine.errors import PricingError
from enrollment_pricing.engine.money import format_money
from enrollment_pricing.config.settings import get_settings


st.set_page_config(
    page_title="Enrollment Pricing",
    layout="wide",
    initial_sidebar_state="expanded"
)


@st.cache_resource
def get_engine():
    """Get cached engine instance."""
    return PricingEngine()


@st.cache_resource
def get_settings_cached():
    """Get cached settings."""
    return get_settings()


try:
    engine = get_engine()
    settings = get_settings_cached()
except (PricingError, FileNotFoundError, ValueError) as e:
    st.error(f"System Error: {e}")
    st.stop()


def money(value) -> str:
    return format_money(value, settings.currency)


def tier_label(tier) -> str:
    label = f"{tier.value} (sib≥{tier.min_siblings}, subj≥{tier.min_subjects}, total≥{tier.min_family_total}"
    if tier.registration_before:
        label += f", before {tier.registration_before.date()}"
    if tier.season_start or tier.season_end:
        start = tier.season_start.date() if tier.season_start else "..."
        end = tier.season_end.date() if tier.season_end else "..."
        label += f", season {start} to {end}"
    return label + ")"


def render_result(result):
    """Show a pricing result: headline metrics, line tables and the trace."""
    breakdown = result.pricing_breakdown

    m1, m2, m3, m4 = st.columns(4)
    m1.metric("Base", money(breakdown.total_base_price))
    m2.metric("Discounts", money(breakdown.total_discount_amount))
    m3.metric("Taxes", money(breakdown.total_tax_amount))
    m4.metric("Final", money(breakdown.final_amount))

    st.caption(f"Snapshot `{result.snapshot_id}` | Calculated {result.calculated_at}")

    st.markdown("##### Subjects")
    st.dataframe(pd.DataFrame([{
        'Subject': s.subject_id,
        'Base Price': money(s.base_price),
        'Free': "Yes" if s.is_free else "",
    } for s in breakdown.subject_pricing]), use_container_width=True, hide_index=True)

    if breakdown.applied_discounts:
        st.markdown("##### Discounts")
        st.dataframe(pd.DataFrame([{
            'Rule': d.discount_rule_id,
            'Type': d.discount_type.value,
            'Value': str(d.discount_value),
            'Amount': money(d.discount_amount),
            'Description': d.description,
        } for d in breakdown.applied_discounts]), use_container_width=True, hide_index=True)

    if breakdown.applied_taxes:
        st.markdown("##### Taxes")
        st.dataframe(pd.DataFrame([{
            'Tax': t.tax_configuration_id,
            'Type': t.tax_type.value,
            'Rate': f"{t.tax_rate}%",
            'Amount': money(t.tax_amount),
            'Inclusive': "Yes" if t.is_inclusive else "",
        } for t in breakdown.applied_taxes]), use_container_width=True, hide_index=True)

    sibling_info = result.sibling_info
    if sibling_info.sibling_count:
        st.caption(f"Siblings: {', '.join(sibling_info.sibling_ids)}")

    with st.expander("🔍 Resolution Trace"):
        st.text(result.get_trace_text())

    st.download_button(
        "📥 Snapshot JSON",
        data=json.dumps(result.to_dict(), indent=2, default=str),
        file_name=f"pricing_{result.snapshot_id}.json",
        mime="application/json",
    )


# ============================================================================
# SIDEBAR: Engine status
# ============================================================================
with st.sidebar:
    st.header("⚙️ Engine")
    if engine.discount_provider.loaded:
        st.success(f"🔧 **{len(engine.discount_provider.rules)} Discount Rules Loaded**")
    else:
        st.warning("⚠️ No discount rules loaded")
    st.caption(f"Tax configurations: {len(engine.tax_provider.configurations)}")
    st.caption(f"Dated subject prices: {len(engine.subject_prices.prices)}")
    st.caption(f"Currency: {settings.currency} | Rounding: {settings.rounding_mode}")
    st.caption(f"Tax stacking: {settings.tax_stacking}")

    if st.button("🔄 Reload Data"):
        try:
            engine.reload_data()
            st.toast("Reference data reloaded")
        except PricingError as e:
            st.error(e.message)


st.title("Enrollment Pricing")
st.caption(f"v1.0 | Pricing Engine Active | {datetime.now().strftime('%Y-%m-%d')}")

tab1, tab2, tab3, tab4 = st.tabs(["⚡ Calculator", "🧾 Snapshots", "🔧 Rules", "📊 System"])


# ============================================================================
# TAB 1: CALCULATOR
# ============================================================================
with tab1:
    classes = engine.catalog.list_classes()
    students = engine.catalog.list_students()

    col1, col2 = st.columns([1.2, 1.8], gap="large")

    with col1:
        st.subheader("Enrollment")
        with st.container(border=True):
            class_labels = {f"{c.class_id} | {c.name}": c.class_id for c in classes}
            class_choice = st.selectbox("Class", options=list(class_labels))
            class_id = class_labels.get(class_choice) if class_choice else None

            student_labels = {f"{s.student_id} | {s.name}": s.student_id for s in students}
            student_choice = st.selectbox("Student", options=list(student_labels))
            student_id = student_labels.get(student_choice) if student_choice else None

            subjects = engine.catalog.list_subjects(class_id) if class_id else []
            subject_labels = {
                f"{s.subject_id} | {s.name} ({'free' if s.is_free else money(s.base_price)})": s.subject_id
                for s in subjects
            }
            chosen_subjects = st.multiselect("Subjects", options=list(subject_labels))

            sibling_labels = {k: v for k, v in student_labels.items() if v != student_id}
            chosen_siblings = st.multiselect("Siblings", options=list(sibling_labels))

            calculate = st.button("Calculate", type="primary", disabled=not chosen_subjects)

    with col2:
        st.subheader("Pricing Breakdown")
        if calculate:
            request = PricingRequest(
                student_id=student_id or "",
                class_id=class_id or "",
                subject_ids=[subject_labels[label] for label in chosen_subjects],
                sibling_ids=[sibling_labels[label] for label in chosen_siblings],
            )
            try:
                st.session_state.last_result = engine.calculate(request)
            except PricingError as e:
                st.session_state.last_result = None
                st.error(f"{e.kind}: {e.message}")

        if st.session_state.get('last_result'):
            render_result(st.session_state.last_result)
        else:
            st.info("Choose a class, a student and at least one subject.")


# ============================================================================
# TAB 2: SNAPSHOT LOOKUP
# ============================================================================
with tab2:
    st.subheader("🧾 Snapshot Lookup")
    snapshot_id = st.text_input("Snapshot ID", placeholder="Paste a snapshot id...")
    if snapshot_id:
        try:
            render_result(engine.get_snapshot(snapshot_id.strip()))
        except PricingError as e:
            st.warning(e.message)
    st.caption(f"Snapshots stored: {engine.snapshot_store.count():,}")


# ============================================================================
# TAB 3: DISCOUNT RULES AND TAXES
# ============================================================================
with tab3:
    st.subheader("🔧 Discount Rules")
    if engine.discount_provider.loaded and engine.discount_provider.rules:
        rules_data = []
        for rule in engine.discount_provider.rules:
            tiers = "; ".join(tier_label(t) for t in rule.tiers)
            rules_data.append({
                'ID': rule.rule_id,
                'Priority': rule.priority,
                'Type': rule.type.value,
                'Application': rule.application.value,
                'Stackable': rule.stackable,
                'Active': rule.active,
                'Tiers': tiers,
            })
        st.dataframe(pd.DataFrame(rules_data), use_container_width=True, hide_index=True)
    else:
        st.info("No active rules.")

    st.subheader("🏛️ Tax Configurations")
    if engine.tax_provider.configurations:
        st.dataframe(pd.DataFrame([{
            'ID': t.tax_id,
            'Code': t.code,
            'Type': t.type.value,
            'Rate': f"{t.rate}%",
            'Order': t.order,
            'Inclusive': t.is_inclusive,
            'Active': t.is_active,
        } for t in engine.tax_provider.configurations]), use_container_width=True, hide_index=True)
    else:
        st.info("No tax configurations.")

    st.subheader("🗓️ Subject Price Book")
    if engine.subject_prices.prices:
        st.dataframe(pd.DataFrame([{
            'ID': p.pricing_id,
            'Class': p.class_id,
            'Subject': p.subject_id,
            'Base Price': money(p.base_price),
            'Valid From': p.valid_from.date().isoformat(),
            'Valid To': p.valid_to.date().isoformat() if p.valid_to else "",
            'Active': p.is_active,
        } for p in engine.subject_prices.prices]), use_container_width=True, hide_index=True)
    else:
        st.info("No dated subject prices; catalog prices apply.")


# ============================================================================
# TAB 4: SYSTEM INFO
# ============================================================================
with tab4:
    st.header("System Status")
    report_path = settings.data_report
    if report_path and report_path.exists():
        with open(report_path, 'r') as f:
            report = json.load(f)

        metrics = report.get('metrics', {})
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Classes", f"{metrics.get('classes_count', 0):,}")
        c2.metric("Subjects", f"{metrics.get('subjects_count', 0):,}")
        c3.metric("Students", f"{metrics.get('students_count', 0):,}")
        c4.metric("Last Check", report.get('timestamp', '')[:10])

        for warning in report.get('warnings', []):
            st.warning(warning)
        for error in report.get('errors', []):
            st.error(error)
    else:
        st.info("No data report yet. Run scripts/build_all.py.")

    if st.button("🔨 Check Reference Data", type="secondary"):
        from enrollment_pricing.data.data_report import build_data_report
        with st.spinner("Checking..."):
            build_data_report(settings, verbose=False, output_path=settings.data_report)
            st.toast("Data report refreshed")
            st.rerun()
