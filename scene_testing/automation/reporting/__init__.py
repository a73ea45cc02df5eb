"""Run reports: summary workbook and optional allure attachments."""

from .workbook import SUMMARY_FILENAME, read_results_summary, write_results_summary
