# utils/report_generator.py

import html
import json
import logging
from pathlib import Path
from typing import Dict, List, Sequence

from core.models import DuplicateGroup
from utils.file_utils import format_file_size

logger = logging.getLogger(__name__)


def groups_to_dicts(groups: Sequence[DuplicateGroup],
                    paths: Dict[int, str]) -> List[dict]:
    """Plain-data form of duplicate groups for JSON output"""
    return [
        {
            'representative': {'id': g.representative_id,
                               'path': paths.get(g.representative_id)},
            'members': [{'id': m, 'path': paths.get(m)} for m in g.member_ids],
            'similarity': g.similarity,
        }
        for g in groups
    ]


def save_groups_json(groups: Sequence[DuplicateGroup],
                     paths: Dict[int, str],
                     output_path: str):
    with open(output_path, 'w') as f:
        json.dump(groups_to_dicts(groups, paths), f, indent=2)


def _file_size(path: str) -> int:
    try:
        return Path(path).stat().st_size
    except OSError:
        return 0


class DuplicateReportGenerator:
    """
    Generate HTML reports for duplicate groups.

    `paths` maps media ids to file paths; ids missing from it are shown
    by id only.
    """

    def generate_report(self,
                        groups: Sequence[DuplicateGroup],
                        paths: Dict[int, str],
                        output_path: str = "duplicate_report.html") -> str:
        html_content = self._create_html_template()

        total_duplicates = sum(len(g.member_ids) for g in groups)
        space_savings = self._calculate_space_savings(groups, paths)

        stats_html = f"""
        <div class="statistics">
            <h2>Duplicate Detection Summary</h2>
            <p><strong>Total duplicate groups:</strong> {len(groups)}</p>
            <p><strong>Total duplicate files:</strong> {total_duplicates}</p>
            <p><strong>Potential space savings:</strong> {format_file_size(space_savings)}</p>
        </div>
        """

        groups_html = "<div class='duplicate-groups'>"
        for idx, group in enumerate(groups):
            groups_html += self._create_group_html(idx, group, paths)
        groups_html += "</div>"

        final_html = html_content.replace("{{STATS}}", stats_html)
        final_html = final_html.replace("{{GROUPS}}", groups_html)

        with open(output_path, 'w') as f:
            f.write(final_html)

        logger.info("Report generated: %s", output_path)
        return output_path

    def _calculate_space_savings(self, groups: Sequence[DuplicateGroup],
                                 paths: Dict[int, str]) -> int:
        """Bytes freed by removing every non-representative member"""
        return sum(_file_size(paths[m]) for g in groups for m in g.member_ids
                   if m in paths)

    def _item_html(self, media_id: int, paths: Dict[int, str], css_class: str) -> str:
        path = paths.get(media_id)
        if path is None:
            return f'<div class="{css_class}"><p>Item {media_id}</p></div>'

        escaped = html.escape(path, quote=True)
        return f"""
                <div class="{css_class}">
                    <img src="file://{escaped}" />
                    <p>{html.escape(Path(path).name)}</p>
                    <p class="file-info">Item {media_id} - {format_file_size(_file_size(path))}</p>
                </div>
        """

    def _create_group_html(self, idx: int, group: DuplicateGroup,
                           paths: Dict[int, str]) -> str:
        group_html = f"""
        <div class="duplicate-group">
            <h3>Group {idx + 1} (similarity &ge; {group.similarity:.2f})</h3>
            <div class="representative">
                <h4>Keep (Representative)</h4>
                {self._item_html(group.representative_id, paths, "representative-item")}
            </div>
            <div class="duplicates-list">
                <h4>Duplicates ({len(group.member_ids)}) - Consider Deleting</h4>
        """

        for member_id in group.member_ids:
            group_html += self._item_html(member_id, paths, "duplicate-item")

        group_html += """
            </div>
        </div>
        """
        return group_html

    def _create_html_template(self) -> str:
        return """
        <!DOCTYPE html>
        <html>
        <head>
            <title>Duplicate Detection Report</title>
            <style>
                body { font-family: Arial, sans-serif; margin: 20px; }
                .statistics { background: #f0f0f0; padding: 20px; border-radius: 5px; }
                .duplicate-group { border: 1px solid #ccc; margin: 20px 0; padding: 15px; }
                .representative { background: #e8f5e9; padding: 10px; }
                .duplicates-list { display: grid; grid-template-columns: repeat(auto-fill, minmax(200px, 1fr)); gap: 10px; margin-top: 10px; }
                .duplicate-item { border: 1px solid #ddd; padding: 10px; text-align: center; }
                img { max-width: 100%; height: auto; max-height: 200px; object-fit: contain; }
                .file-info { font-size: 0.9em; color: #666; }
            </style>
        </head>
        <body>
            <h1>Duplicate Detection Report</h1>
            {{STATS}}
            {{GROUPS}}
        </body>
        </html>
        """
