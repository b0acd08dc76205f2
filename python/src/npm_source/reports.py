"""
Text reports for package operations.
"""

import json

from .cache.popularity import format_date
from .packages.models import (
    NO_DESCRIPTION,
    CodeFile,
    PackageCode,
    PackageFileListing,
    PackageInfoRecord,
    SearchResult,
)


def render_code_file(code_file: CodeFile) -> str:
    return f"File: {code_file.path}\n\n{code_file.content}"


def render_package_code(package_code: PackageCode) -> str:
    descriptor = package_code.descriptor
    selection = package_code.selection

    text = f"Package: {descriptor.name}@{descriptor.version}\n"
    text += f"Description: {descriptor.description or 'No description'}\n"
    text += f"Code files found: {selection.total_candidates}\n\n"

    for code_file in selection.files:
        text += f"=== {code_file.path} ===\n"
        text += code_file.content + "\n\n"

    if selection.remaining:
        text += f"... and {selection.remaining} more files\n"
        text += "List the package files to see all of them, then fetch specific files as needed.\n"
    return text


def render_file_listing(listing: PackageFileListing) -> str:
    files = "\n".join(listing.files)
    return f"Package: {listing.name}@{listing.version}\nTotal files: {listing.total}\n\nFiles:\n{files}"


def render_package_info(record: PackageInfoRecord) -> str:
    return f"Package Information:\n{json.dumps(record.to_dict(), indent=2)}"


def _percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def render_search_results(result: SearchResult) -> str:
    text = f'Search Results for "{result.query}"\n'
    text += f"Total packages found: {result.total}\n"
    text += f"Showing {len(result.hits)} results (from {result.from_})\n\n"

    for hit in result.hits:
        score = hit.score
        text += f"**{hit.name}** v{hit.version}\n"
        text += f"   {hit.description or NO_DESCRIPTION}\n"
        if hit.keywords:
            text += f"   Keywords: {', '.join(hit.keywords)}\n"
        if hit.author:
            text += f"   Author: {hit.author}\n"
        text += (
            f"   Score: {_percent(score.final)} (Quality: {_percent(score.quality)}, "
            f"Popularity: {_percent(score.popularity)}, Maintenance: {_percent(score.maintenance)})\n"
        )
        if hit.npm_url:
            text += f"   NPM: {hit.npm_url}\n"
        if hit.homepage:
            text += f"   Homepage: {hit.homepage}\n"
        if hit.repository:
            text += f"   Repository: {hit.repository}\n"
        text += f"   Last updated: {format_date(hit.date)}\n\n"

    if not result.hits:
        text += "No packages found for this search query.\n"
        text += "Try:\n"
        text += "- Using different keywords\n"
        text += "- Checking spelling\n"
        text += "- Using more general terms\n"
    return text
