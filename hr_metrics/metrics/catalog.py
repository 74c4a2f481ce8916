"""Static catalog of HR analytics metrics.

Queries target the hospital HR database (SQLite dialect).  Changing a formula
means editing this module and redeploying; nothing mutates definitions at
runtime.
"""

from hr_metrics.metrics.models import DisplayShape, MetricDefinition, QuerySpec

_EMP = "employees e"
_EMP_DEPT = "employees e LEFT JOIN departments d ON e.department_id = d.department_id"
_PAYSLIPS = (
    "payroll_runs pr"
    " JOIN payslips ps ON pr.payroll_run_id = ps.payroll_run_id"
    " JOIN employees e ON ps.employee_id = e.employee_id"
)
_LAST_12_MONTHS = "date('now', '-12 months')"

S = DisplayShape


def _metric(
    category: str,
    name: str,
    shape: DisplayShape,
    description: str,
    formula: str,
    *,
    source: str,
    select: tuple[str, ...],
    where: tuple[str, ...] = (),
    group_by: tuple[str, ...] = (),
    order_by: tuple[str, ...] = (),
    date_column: str | None = None,
    employee_scoped: bool = True,
) -> MetricDefinition:
    return MetricDefinition(
        category=category,
        name=name,
        display_shape=shape,
        description=description,
        formula=formula,
        query=QuerySpec(
            source=source,
            select=select,
            where=where,
            group_by=group_by,
            order_by=order_by,
            department_column="e.department_id" if employee_scoped else None,
            branch_column="e.branch_id" if employee_scoped else None,
            date_column=date_column,
        ),
    )


def _employee_demographics() -> list[MetricDefinition]:
    c = "employee_demographics"
    active = ("e.is_active = 1",)
    return [
        _metric(c, "total_headcount", S.SCALAR, "Total active workforce size", "COUNT(Active Employees)",
                source=_EMP, select=("COUNT(*) AS value",), where=active, date_column="e.date_hired"),
        _metric(c, "headcount_by_department", S.CATEGORICAL, "Staffing distribution across departments",
                "COUNT(EmployeeID) GROUP BY Department",
                source=_EMP_DEPT, select=("d.department_name AS department", "COUNT(e.employee_id) AS value"),
                where=active, group_by=("d.department_id", "d.department_name"), order_by=("value DESC",),
                date_column="e.date_hired"),
        _metric(c, "average_age", S.SCALAR, "Average workforce age", "AVG(CurrentDate - Birthdate)",
                source=_EMP,
                select=("ROUND(AVG((julianday('now') - julianday(e.date_of_birth)) / 365.25), 1) AS value",),
                where=active),
        _metric(c, "gender_ratio", S.CATEGORICAL, "Gender diversity distribution", "COUNT GROUP BY Gender",
                source=_EMP, select=("e.gender AS gender", "COUNT(*) AS value"), where=active,
                group_by=("e.gender",)),
        _metric(c, "employment_type_ratio", S.CATEGORICAL, "Employment classification distribution",
                "COUNT by Employment Type",
                source=_EMP, select=("e.employment_type AS employment_type", "COUNT(*) AS value"), where=active,
                group_by=("e.employment_type",)),
        _metric(c, "average_tenure", S.GAUGE, "Average employee tenure in years", "AVG(CurrentDate - DateHired)",
                source=_EMP,
                select=("ROUND(AVG((julianday('now') - julianday(e.date_hired)) / 365.25), 1) AS value",),
                where=active),
        _metric(c, "education_level_ratio", S.CATEGORICAL, "Educational background distribution",
                "COUNT by Education Level",
                source=_EMP, select=("e.education_level AS education_level", "COUNT(*) AS value"), where=active,
                group_by=("e.education_level",)),
    ]


def _recruitment() -> list[MetricDefinition]:
    c = "recruitment"
    return [
        _metric(c, "applications_received", S.TIME_SERIES, "Monthly application volume trend",
                "COUNT(Applications) per month",
                source="job_applications ja",
                select=("strftime('%Y-%m', ja.application_date) AS period", "COUNT(*) AS value"),
                where=(f"ja.application_date >= {_LAST_12_MONTHS}",),
                group_by=("period",), order_by=("period",), date_column="ja.application_date",
                employee_scoped=False),
        _metric(c, "time_to_hire", S.SCALAR, "Average days from application to hire",
                "AVG(DateHired - ApplicationDate)",
                source="job_applications ja",
                select=("ROUND(AVG(julianday(ja.date_hired) - julianday(ja.application_date)), 1) AS value",),
                where=("ja.status = 'Hired'", "ja.date_hired IS NOT NULL"),
                date_column="ja.application_date", employee_scoped=False),
        _metric(c, "offer_acceptance_rate", S.GAUGE, "Percentage of offers accepted",
                "(Accepted / Offers Sent) x 100",
                source="job_applications ja",
                select=("100.0 * SUM(CASE WHEN ja.status = 'Hired' THEN 1 ELSE 0 END) / NULLIF(COUNT(*), 0) AS value",),
                where=("ja.status IN ('Hired', 'Rejected')",),
                date_column="ja.application_date", employee_scoped=False),
        _metric(c, "new_hire_retention_30_days", S.GAUGE, "30-day new hire retention rate",
                "(Employed after 30 days / Hired) x 100",
                source=_EMP,
                select=(
                    "100.0 * SUM(CASE WHEN e.date_separated IS NULL"
                    " OR e.date_separated > date(e.date_hired, '+30 days') THEN 1 ELSE 0 END)"
                    " / NULLIF(COUNT(*), 0) AS value",
                ),
                where=("e.date_hired >= date('now', '-3 months')",), date_column="e.date_hired"),
        _metric(c, "vacancy_rate", S.SCALAR, "Percentage of open positions", "(Open Positions / Total Positions) x 100",
                source="positions p",
                select=("100.0 * SUM(CASE WHEN p.status = 'Open' THEN 1 ELSE 0 END) / NULLIF(COUNT(*), 0) AS value",),
                where=("p.is_active = 1",), employee_scoped=False),
        _metric(c, "source_of_hire_ratio", S.CATEGORICAL, "Hiring source effectiveness", "COUNT(Hires by Source)",
                source="job_applications ja",
                select=("ja.application_source AS source", "COUNT(*) AS value"),
                where=("ja.status = 'Hired'",), group_by=("ja.application_source",),
                date_column="ja.application_date", employee_scoped=False),
    ]


def _payroll_compensation() -> list[MetricDefinition]:
    c = "payroll_compensation"
    return [
        _metric(c, "total_payroll_cost", S.TIME_SERIES, "Monthly total payroll expenditure", "SUM(Gross Pay) per month",
                source=_PAYSLIPS,
                select=("strftime('%Y-%m', pr.pay_period_start) AS period", "SUM(ps.gross_pay) AS value"),
                where=(f"pr.pay_period_start >= {_LAST_12_MONTHS}",),
                group_by=("period",), order_by=("period",), date_column="pr.pay_period_start"),
        _metric(c, "avg_salary_per_grade", S.CATEGORICAL, "Average salary by grade level", "AVG(Salary) GROUP BY Grade",
                source=(
                    "salary_grades sg"
                    " JOIN employee_grade_mapping egm ON sg.grade_id = egm.grade_id"
                    " JOIN employee_salaries es ON egm.employee_id = es.employee_id"
                    " JOIN employees e ON es.employee_id = e.employee_id"
                ),
                select=("sg.grade_name AS grade", "ROUND(AVG(es.base_salary), 2) AS value"),
                where=("es.is_current = 1",), group_by=("sg.grade_id", "sg.grade_name")),
        _metric(c, "payroll_cost_per_department", S.CATEGORICAL, "Payroll cost by department, last month",
                "SUM(Gross Pay) GROUP BY Department",
                source=_PAYSLIPS + " LEFT JOIN departments d ON e.department_id = d.department_id",
                select=("d.department_name AS department", "SUM(ps.gross_pay) AS value"),
                where=("pr.pay_period_start >= date('now', '-1 months')",),
                group_by=("d.department_id", "d.department_name"), date_column="pr.pay_period_start"),
        _metric(c, "overtime_cost_ratio", S.GAUGE, "Overtime pay as a share of gross pay",
                "(Overtime Pay / Gross Pay) x 100",
                source=_PAYSLIPS,
                select=("100.0 * SUM(ps.overtime_pay) / NULLIF(SUM(ps.gross_pay), 0) AS value",),
                where=(f"pr.pay_period_start >= {_LAST_12_MONTHS}",), date_column="pr.pay_period_start"),
        _metric(c, "tax_deduction_rate", S.SCALAR, "Tax withheld as a share of gross pay",
                "(Tax Deductions / Gross Pay) x 100",
                source=_PAYSLIPS,
                select=("100.0 * SUM(ps.tax_deduction) / NULLIF(SUM(ps.gross_pay), 0) AS value",),
                where=(f"pr.pay_period_start >= {_LAST_12_MONTHS}",), date_column="pr.pay_period_start"),
        _metric(c, "net_pay_distribution", S.TABLE, "Net pay bands across the workforce, last run",
                "COUNT(Employees) GROUP BY Net Pay Band",
                source=_PAYSLIPS,
                select=(
                    "CASE WHEN ps.net_pay < 20000 THEN 'Below 20K'"
                    " WHEN ps.net_pay < 40000 THEN '20K-40K'"
                    " WHEN ps.net_pay < 60000 THEN '40K-60K'"
                    " ELSE '60K and above' END AS pay_band",
                    "COUNT(*) AS employees",
                    "ROUND(AVG(ps.net_pay), 2) AS average_net_pay",
                ),
                where=("pr.payroll_run_id = (SELECT MAX(payroll_run_id) FROM payroll_runs)",),
                group_by=("pay_band",), order_by=("MIN(ps.net_pay)",)),
    ]


def _attendance_leave() -> list[MetricDefinition]:
    c = "attendance_leave"
    att = "attendance a JOIN employees e ON a.employee_id = e.employee_id"
    leave = "leave_requests lr JOIN employees e ON lr.employee_id = e.employee_id"
    return [
        _metric(c, "attendance_rate", S.TIME_SERIES, "Monthly attendance rate", "(Present Days / Scheduled Days) x 100",
                source=att,
                select=(
                    "strftime('%Y-%m', a.attendance_date) AS period",
                    "ROUND(100.0 * SUM(CASE WHEN a.status IN ('Present', 'Late') THEN 1 ELSE 0 END)"
                    " / NULLIF(COUNT(*), 0), 2) AS value",
                ),
                where=(f"a.attendance_date >= {_LAST_12_MONTHS}",),
                group_by=("period",), order_by=("period",), date_column="a.attendance_date"),
        _metric(c, "absenteeism_rate", S.SCALAR, "Share of scheduled days missed", "(Absent Days / Scheduled Days) x 100",
                source=att,
                select=("100.0 * SUM(CASE WHEN a.status = 'Absent' THEN 1 ELSE 0 END) / NULLIF(COUNT(*), 0) AS value",),
                where=("a.attendance_date >= date('now', '-1 months')",), date_column="a.attendance_date"),
        _metric(c, "late_arrival_rate", S.GAUGE, "Share of attendance records marked late", "(Late Days / Present Days) x 100",
                source=att,
                select=(
                    "100.0 * SUM(CASE WHEN a.status = 'Late' THEN 1 ELSE 0 END)"
                    " / NULLIF(SUM(CASE WHEN a.status IN ('Present', 'Late') THEN 1 ELSE 0 END), 0) AS value",
                ),
                where=("a.attendance_date >= date('now', '-1 months')",), date_column="a.attendance_date"),
        _metric(c, "overtime_hours", S.CATEGORICAL, "Overtime hours by department", "SUM(Overtime Hours) GROUP BY Department",
                source=att + " LEFT JOIN departments d ON e.department_id = d.department_id",
                select=("d.department_name AS department", "SUM(a.overtime_hours) AS value"),
                where=("a.attendance_date >= date('now', '-1 months')",),
                group_by=("d.department_id", "d.department_name"), date_column="a.attendance_date"),
        _metric(c, "leave_utilization_rate", S.CATEGORICAL, "Leave requests by status", "COUNT(Leave Requests) GROUP BY Status",
                source=leave, select=("lr.status AS status", "COUNT(*) AS value"),
                where=(f"lr.start_date >= {_LAST_12_MONTHS}",), group_by=("lr.status",), date_column="lr.start_date"),
        _metric(c, "top_leave_types", S.CATEGORICAL, "Most used leave types", "SUM(Leave Days) GROUP BY Leave Type",
                source=leave, select=("lr.leave_type AS leave_type", "SUM(lr.days) AS value"),
                where=("lr.status = 'Approved'",), group_by=("lr.leave_type",), order_by=("value DESC",),
                date_column="lr.start_date"),
    ]


def _benefits_hmo() -> list[MetricDefinition]:
    c = "benefits_hmo"
    claims = "hmo_claims hc JOIN employees e ON hc.employee_id = e.employee_id"
    enrollments = "hmo_enrollments he JOIN employees e ON he.employee_id = e.employee_id"
    return [
        _metric(c, "total_benefits_cost", S.TIME_SERIES, "Monthly HMO claim payouts", "SUM(Claim Amount) per month",
                source=claims,
                select=("strftime('%Y-%m', hc.claim_date) AS period", "SUM(hc.amount) AS value"),
                where=(f"hc.claim_date >= {_LAST_12_MONTHS}",),
                group_by=("period",), order_by=("period",), date_column="hc.claim_date"),
        _metric(c, "hmo_utilization_rate", S.GAUGE, "Share of enrolled employees who filed a claim",
                "(Employees with Claims / Enrolled Employees) x 100",
                source=enrollments,
                select=(
                    "100.0 * COUNT(DISTINCT CASE WHEN EXISTS (SELECT 1 FROM hmo_claims hc"
                    " WHERE hc.employee_id = he.employee_id) THEN he.employee_id END)"
                    " / NULLIF(COUNT(DISTINCT he.employee_id), 0) AS value",
                ),
                where=("he.status = 'Active'",)),
        _metric(c, "average_claim_cost", S.SCALAR, "Average amount per HMO claim", "AVG(Claim Amount)",
                source=claims, select=("ROUND(AVG(hc.amount), 2) AS value",), date_column="hc.claim_date"),
        _metric(c, "claim_processing_time", S.TIME_SERIES, "Average days to process a claim, by month",
                "AVG(Processed Date - Claim Date) per month",
                source=claims,
                select=(
                    "strftime('%Y-%m', hc.claim_date) AS period",
                    "ROUND(AVG(julianday(hc.processed_date) - julianday(hc.claim_date)), 1) AS value",
                ),
                where=("hc.processed_date IS NOT NULL", f"hc.claim_date >= {_LAST_12_MONTHS}"),
                group_by=("period",), order_by=("period",), date_column="hc.claim_date"),
        _metric(c, "benefits_roi", S.INDICATOR_GAUGE, "Claims paid back per premium spent",
                "(Claims Paid / Premiums Paid) x 100",
                source=enrollments,
                select=(
                    "100.0 * (SELECT COALESCE(SUM(hc.amount), 0) FROM hmo_claims hc WHERE hc.status = 'Approved')"
                    " / NULLIF(SUM(he.monthly_premium * 12), 0) AS value",
                ),
                where=("he.status = 'Active'",)),
    ]


def _training_development() -> list[MetricDefinition]:
    c = "training_development"
    tp = "training_participants tp JOIN employees e ON tp.employee_id = e.employee_id"
    return [
        _metric(c, "training_participation_rate", S.CATEGORICAL, "Employees with and without training this year",
                "COUNT(Employees) GROUP BY Trained",
                source=_EMP,
                select=(
                    "CASE WHEN EXISTS (SELECT 1 FROM training_participants tp WHERE tp.employee_id = e.employee_id"
                    " AND tp.completion_date >= date('now', 'start of year')) THEN 'Trained' ELSE 'Not trained' END"
                    " AS participation",
                    "COUNT(*) AS value",
                ),
                where=("e.is_active = 1",), group_by=("participation",)),
        _metric(c, "training_cost_per_employee", S.SCALAR, "Training spend per active employee",
                "SUM(Training Cost) / Active Employees",
                source=tp,
                select=(
                    "ROUND(SUM(tp.cost) / NULLIF((SELECT COUNT(*) FROM employees WHERE is_active = 1), 0), 2) AS value",
                ),
                where=("tp.completion_date >= date('now', 'start of year')",), date_column="tp.completion_date"),
        _metric(c, "competency_improvement_score", S.CATEGORICAL, "Average post-training score gain by department",
                "AVG(Post Score - Pre Score) GROUP BY Department",
                source=tp + " LEFT JOIN departments d ON e.department_id = d.department_id",
                select=("d.department_name AS department", "ROUND(AVG(tp.post_score - tp.pre_score), 2) AS value"),
                where=("tp.post_score IS NOT NULL", "tp.pre_score IS NOT NULL"),
                group_by=("d.department_id", "d.department_name"), date_column="tp.completion_date"),
        _metric(c, "certifications_earned", S.TABLE, "Certifications earned in the last twelve months",
                "LIST(Certifications)",
                source="certifications ce JOIN employees e ON ce.employee_id = e.employee_id",
                select=(
                    "e.first_name || ' ' || e.last_name AS employee",
                    "ce.certification_name AS certification",
                    "ce.date_earned AS date_earned",
                ),
                where=(f"ce.date_earned >= {_LAST_12_MONTHS}",), order_by=("ce.date_earned DESC",),
                date_column="ce.date_earned"),
        _metric(c, "skill_gap_index", S.GAUGE, "Share of required competencies not yet met",
                "(Unmet Competencies / Required Competencies) x 100",
                source="employee_competencies ec JOIN employees e ON ec.employee_id = e.employee_id",
                select=(
                    "100.0 * SUM(CASE WHEN ec.current_level < ec.required_level THEN 1 ELSE 0 END)"
                    " / NULLIF(COUNT(*), 0) AS value",
                ),
                where=("e.is_active = 1",)),
    ]


def _employee_relations_engagement() -> list[MetricDefinition]:
    c = "employee_relations_engagement"
    surveys = "engagement_surveys es JOIN employees e ON es.employee_id = e.employee_id"
    cases = "disciplinary_cases dc JOIN employees e ON dc.employee_id = e.employee_id"
    return [
        _metric(c, "engagement_index", S.GAUGE, "Average engagement survey score (0-100)", "AVG(Survey Score)",
                source=surveys, select=("ROUND(AVG(es.score), 2) AS value",),
                where=(f"es.survey_date >= {_LAST_12_MONTHS}",), date_column="es.survey_date"),
        _metric(c, "participation_rate", S.SCALAR, "Share of active employees who answered a survey",
                "(Respondents / Active Employees) x 100",
                source=surveys,
                select=(
                    "100.0 * COUNT(DISTINCT es.employee_id)"
                    " / NULLIF((SELECT COUNT(*) FROM employees WHERE is_active = 1), 0) AS value",
                ),
                where=(f"es.survey_date >= {_LAST_12_MONTHS}",), date_column="es.survey_date"),
        _metric(c, "disciplinary_case_rate", S.CATEGORICAL, "Disciplinary cases by type", "COUNT(Cases) GROUP BY Type",
                source=cases, select=("dc.case_type AS case_type", "COUNT(*) AS value"),
                where=(f"dc.opened_date >= {_LAST_12_MONTHS}",), group_by=("dc.case_type",),
                date_column="dc.opened_date"),
        _metric(c, "case_resolution_time", S.SCALAR, "Average days to resolve a case", "AVG(Resolved Date - Opened Date)",
                source=cases,
                select=("ROUND(AVG(julianday(dc.resolved_date) - julianday(dc.opened_date)), 1) AS value",),
                where=("dc.resolved_date IS NOT NULL",), date_column="dc.opened_date"),
        _metric(c, "recognition_events_per_month", S.TIME_SERIES, "Recognition events per month",
                "COUNT(Recognitions) per month",
                source="recognitions r JOIN employees e ON r.employee_id = e.employee_id",
                select=("strftime('%Y-%m', r.recognition_date) AS period", "COUNT(*) AS value"),
                where=(f"r.recognition_date >= {_LAST_12_MONTHS}",),
                group_by=("period",), order_by=("period",), date_column="r.recognition_date"),
    ]


def _turnover_retention() -> list[MetricDefinition]:
    c = "turnover_retention"
    separated = ("e.date_separated IS NOT NULL",)
    return [
        _metric(c, "turnover_rate", S.TIME_SERIES, "Monthly separations", "COUNT(Separations) per month",
                source=_EMP,
                select=("strftime('%Y-%m', e.date_separated) AS period", "COUNT(*) AS value"),
                where=(*separated, f"e.date_separated >= {_LAST_12_MONTHS}"),
                group_by=("period",), order_by=("period",), date_column="e.date_separated"),
        _metric(c, "voluntary_vs_involuntary_exit", S.CATEGORICAL, "Exits by separation type",
                "COUNT(Separations) GROUP BY Type",
                source=_EMP, select=("e.separation_type AS separation_type", "COUNT(*) AS value"),
                where=separated, group_by=("e.separation_type",), date_column="e.date_separated"),
        _metric(c, "avg_tenure_of_exiting_employees", S.SCALAR, "Average tenure in years at separation",
                "AVG(Separation Date - Hire Date)",
                source=_EMP,
                select=("ROUND(AVG((julianday(e.date_separated) - julianday(e.date_hired)) / 365.25), 1) AS value",),
                where=separated, date_column="e.date_separated"),
        _metric(c, "retention_rate", S.SCALAR, "Share of employees retained over twelve months",
                "(Employees Still Active / Employees at Start) x 100",
                source=_EMP,
                select=(
                    "100.0 * SUM(CASE WHEN e.date_separated IS NULL OR e.date_separated > date('now') THEN 1 ELSE 0 END)"
                    " / NULLIF(COUNT(*), 0) AS value",
                ),
                where=(f"e.date_hired <= {_LAST_12_MONTHS}",)),
        _metric(c, "top_reasons_for_exit", S.CATEGORICAL, "Most common separation reasons",
                "COUNT(Separations) GROUP BY Reason",
                source=_EMP, select=("e.separation_reason AS reason", "COUNT(*) AS value"),
                where=separated, group_by=("e.separation_reason",), order_by=("value DESC",),
                date_column="e.date_separated"),
    ]


def _compliance_audit() -> list[MetricDefinition]:
    c = "compliance_audit"
    licenses = "employee_licenses el JOIN employees e ON el.employee_id = e.employee_id"
    documents = "employee_documents ed JOIN employees e ON ed.employee_id = e.employee_id"
    return [
        _metric(c, "license_compliance_rate", S.GAUGE, "Share of professional licenses currently valid",
                "(Valid Licenses / Required Licenses) x 100",
                source=licenses,
                select=("100.0 * SUM(CASE WHEN el.expiry_date >= date('now') THEN 1 ELSE 0 END) / NULLIF(COUNT(*), 0) AS value",),
                where=("e.is_active = 1",)),
        _metric(c, "document_completion_rate", S.SCALAR, "Share of required documents on file",
                "(Submitted Documents / Required Documents) x 100",
                source=documents,
                select=("100.0 * SUM(CASE WHEN ed.status = 'Submitted' THEN 1 ELSE 0 END) / NULLIF(COUNT(*), 0) AS value",),
                where=("e.is_active = 1",)),
        _metric(c, "expiring_documents_count", S.TABLE, "Documents and licenses expiring within 30 days",
                "LIST(Documents WHERE Expiry <= Today + 30)",
                source=documents,
                select=(
                    "e.first_name || ' ' || e.last_name AS employee",
                    "ed.document_type AS document_type",
                    "ed.expiry_date AS expiry_date",
                ),
                where=("ed.expiry_date BETWEEN date('now') AND date('now', '+30 days')",),
                order_by=("ed.expiry_date",)),
        _metric(c, "audit_findings_rate", S.TIME_SERIES, "Audit findings per month", "COUNT(Findings) per month",
                source="audit_findings af",
                select=("strftime('%Y-%m', af.finding_date) AS period", "COUNT(*) AS value"),
                where=(f"af.finding_date >= {_LAST_12_MONTHS}",),
                group_by=("period",), order_by=("period",), date_column="af.finding_date", employee_scoped=False),
    ]


def _executive_kpi() -> list[MetricDefinition]:
    c = "executive_kpi"
    return [
        _metric(c, "headcount_trend", S.TIME_SERIES, "New hires per month", "COUNT(Hires) per month",
                source=_EMP,
                select=("strftime('%Y-%m', e.date_hired) AS period", "COUNT(*) AS value"),
                where=(f"e.date_hired >= {_LAST_12_MONTHS}",),
                group_by=("period",), order_by=("period",), date_column="e.date_hired"),
        _metric(c, "turnover_trend_ytd", S.TIME_SERIES, "Separations per month, year to date",
                "COUNT(Separations) per month YTD",
                source=_EMP,
                select=("strftime('%Y-%m', e.date_separated) AS period", "COUNT(*) AS value"),
                where=("e.date_separated >= date('now', 'start of year')",),
                group_by=("period",), order_by=("period",), date_column="e.date_separated"),
        _metric(c, "total_payroll_vs_budget", S.TABLE, "Monthly payroll against budget", "SUM(Gross Pay) vs Budget",
                source="payroll_budgets pb",
                select=(
                    "pb.period AS period",
                    "pb.amount AS budget",
                    "(SELECT COALESCE(SUM(ps.gross_pay), 0) FROM payroll_runs pr"
                    " JOIN payslips ps ON pr.payroll_run_id = ps.payroll_run_id"
                    " WHERE strftime('%Y-%m', pr.pay_period_start) = pb.period) AS actual",
                ),
                where=("pb.period >= strftime('%Y-%m', 'now', '-12 months')",),
                order_by=("pb.period",), employee_scoped=False),
        _metric(c, "engagement_score", S.GAUGE, "Latest engagement score (0-100)", "AVG(Survey Score) last quarter",
                source="engagement_surveys es JOIN employees e ON es.employee_id = e.employee_id",
                select=("ROUND(AVG(es.score), 2) AS value",),
                where=("es.survey_date >= date('now', '-3 months')",), date_column="es.survey_date"),
        _metric(c, "avg_training_hours_per_employee", S.SCALAR, "Training hours per active employee this year",
                "SUM(Training Hours) / Active Employees",
                source="training_participants tp JOIN employees e ON tp.employee_id = e.employee_id",
                select=(
                    "ROUND(SUM(tp.hours) / NULLIF((SELECT COUNT(*) FROM employees WHERE is_active = 1), 0), 2) AS value",
                ),
                where=("tp.completion_date >= date('now', 'start of year')",), date_column="tp.completion_date"),
        _metric(c, "benefit_utilization_trend", S.TIME_SERIES, "HMO claims filed per month", "COUNT(Claims) per month",
                source="hmo_claims hc JOIN employees e ON hc.employee_id = e.employee_id",
                select=("strftime('%Y-%m', hc.claim_date) AS period", "COUNT(*) AS value"),
                where=(f"hc.claim_date >= {_LAST_12_MONTHS}",),
                group_by=("period",), order_by=("period",), date_column="hc.claim_date"),
        _metric(c, "compliance_index", S.INDICATOR_GAUGE, "Share of licenses and documents in good standing",
                "(Compliant Items / Total Items) x 100",
                source="employee_licenses el JOIN employees e ON el.employee_id = e.employee_id",
                select=("100.0 * SUM(CASE WHEN el.expiry_date >= date('now') THEN 1 ELSE 0 END) / NULLIF(COUNT(*), 0) AS value",),
                where=("e.is_active = 1",)),
    ]


def build_catalog() -> list[MetricDefinition]:
    """Every cataloged metric, in registration order."""
    return [
        *_employee_demographics(),
        *_recruitment(),
        *_payroll_compensation(),
        *_attendance_leave(),
        *_benefits_hmo(),
        *_training_development(),
        *_employee_relations_engagement(),
        *_turnover_retention(),
        *_compliance_audit(),
        *_executive_kpi(),
    ]


# Categories whose metrics carry money values; used by the finance sink.
FINANCIAL_CATEGORIES: frozenset[str] = frozenset({"payroll_compensation", "benefits_hmo", "executive_kpi"})

# Metrics preloaded into the ephemeral cache when HOT_METRICS is not configured.
DEFAULT_HOT_METRICS: tuple[str, ...] = (
    "employee_demographics.total_headcount",
    "recruitment.time_to_hire",
    "payroll_compensation.total_payroll_cost",
    "attendance_leave.attendance_rate",
    "benefits_hmo.hmo_utilization_rate",
    "training_development.training_participation_rate",
    "employee_relations_engagement.engagement_index",
    "turnover_retention.turnover_rate",
    "compliance_audit.license_compliance_rate",
    "executive_kpi.headcount_trend",
)
