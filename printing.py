"""
Printable documents: student report cards and the mid-day meal register.
"""
import logging
from datetime import date

from jinja2 import DictLoader, Environment, select_autoescape

from api_client import ApiError
from capabilities import LoggingNotifier

logger = logging.getLogger(__name__)

SCHOOL_NAME = 'Baliadanga High School'

TEMPLATES = {
    'base.html': """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{% block title %}{{ school_name }}{% endblock %}</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 24px; }
        h1, h2 { text-align: center; margin: 4px 0; }
        table { width: 100%; border-collapse: collapse; margin-top: 16px; }
        th, td { border: 1px solid #333; padding: 6px; text-align: left; }
        .fail { color: #c00; }
        .totals td { font-weight: bold; }
    </style>
</head>
<body>
    <h1>{{ school_name }}</h1>
    {% block content %}{% endblock %}
</body>
</html>
""",
    'report_card.html': """{% extends "base.html" %}
{% block title %}Report Card - {{ student.name }}{% endblock %}
{% block content %}
<h2>{{ exam.name }} ({{ exam.session }})</h2>
<table>
    <tr><th>Name</th><td>{{ student.name }}</td><th>Student ID</th><td>{{ student.student_id }}</td></tr>
    <tr><th>Class</th><td>{{ student.class_name }} - {{ student.section }}</td><th>Roll No.</th><td>{{ student.roll_number }}</td></tr>
</table>
{% if result %}
<table>
    <tr><th>Subject</th><th>Full Marks</th><th>Pass Marks</th><th>Obtained</th></tr>
    {% for subject in exam.subjects %}
    {% set obtained = result.marks.get(subject.name) %}
    <tr{% if obtained is not none and obtained|float < (subject.pass_marks or 0)|float %} class="fail"{% endif %}>
        <td>{{ subject.name }}</td>
        <td>{{ subject.full_marks }}</td>
        <td>{{ subject.pass_marks }}</td>
        <td>{{ obtained if obtained is not none else '-' }}</td>
    </tr>
    {% endfor %}
    <tr class="totals"><td>Total</td><td>{{ result.full_marks }}</td><td></td><td>{{ result.total_obtained }}</td></tr>
</table>
<p>Percentage: <strong>{{ '%.2f'|format(result.percentage) }}%</strong>
   &nbsp; Grade: <strong>{{ result.grade }}</strong>
   {% if result.rank %}&nbsp; Rank: <strong>{{ result.rank }}</strong>{% endif %}</p>
{% else %}
<p>No marks have been entered for this exam.</p>
{% endif %}
{% endblock %}
""",
    'meal_register.html': """{% extends "base.html" %}
{% block title %}Mid-Day Meal Register {{ summary.date }}{% endblock %}
{% block content %}
<h2>Mid-Day Meal Register - {{ summary.date }}</h2>
<table>
    <tr><th>Class</th><th>Sections</th><th>Class Total</th></tr>
    {% for entry in summary.classes %}
    <tr>
        <td>{{ entry.class_name }}</td>
        <td>{% for section, count in entry.sections.items() %}{{ section }}: {{ count }}{% if not loop.last %}, {% endif %}{% endfor %}</td>
        <td>{{ entry.class_total }}</td>
    </tr>
    {% else %}
    <tr><td colspan="3">No meals recorded.</td></tr>
    {% endfor %}
    <tr class="totals"><td colspan="2">Grand Total</td><td>{{ summary.grand_total }}</td></tr>
</table>
{% endblock %}
""",
}

env = Environment(loader=DictLoader(TEMPLATES), autoescape=select_autoescape(['html']))


def render_report_card(card):
    return env.get_template('report_card.html').render(school_name=SCHOOL_NAME, **card)


def render_meal_register(summary):
    return env.get_template('meal_register.html').render(school_name=SCHOOL_NAME, summary=summary)


def print_report_card(client, printer, student_id, exam_id, notifier=None):
    """Fetch a report card and send it to the printer; returns the printed document"""
    notifier = notifier or LoggingNotifier()
    try:
        card = client.get(f'results/report-card/{student_id}/{exam_id}')['data']
    except ApiError as e:
        logger.error("Report card %s/%s failed: %s", student_id, exam_id, e)
        notifier.notify('error', f'Could not load report card: {e.message}')
        return None
    document = printer.print_document(f"report_card_{card['student']['student_id']}", render_report_card(card))
    notifier.notify('success', f"Report card ready for {card['student']['name']}")
    return document


def print_meal_summary(client, printer, day=None, notifier=None):
    notifier = notifier or LoggingNotifier()
    day = day or date.today()
    try:
        summary = client.get('mid-day-meal/summary', params={'date': day.isoformat()})['data']
    except ApiError as e:
        logger.error("Meal summary for %s failed: %s", day, e)
        notifier.notify('error', f'Could not load meal summary: {e.message}')
        return None
    document = printer.print_document(f'meal_register_{day.isoformat()}', render_meal_register(summary))
    notifier.notify('success', f"Meal register ready: {summary['grand_total']} meals")
    return document
