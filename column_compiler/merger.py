import logging
import os

from PyPDF2 import PdfMerger

from column_compiler.errors import MergeError
from column_compiler.models import MergedDeliverable, OutlineEntry
from column_compiler.utils import get_pdf_page_count, remove_files, sanitize_filename

logger = logging.getLogger(__name__)


def successful_results(results):
    """Successful results in ascending original order, whatever order they finished in."""
    done = [r for r in results if r is not None and r.success and r.artifact_path]
    return sorted(done, key=lambda r: r.original_index)


def merge_pdfs(results, output_dir, collection_title, delete_after_merge=False):
    """Merge per-item PDFs into one deliverable with one bookmark per item."""
    files = []
    outline = []
    current_page = 0  # zero-based index in PyPDF2

    for result in successful_results(results):
        if not os.path.exists(result.artifact_path):
            logger.warning("Skipping missing artifact %s", result.artifact_path)
            continue
        page_count = get_pdf_page_count(result.artifact_path)
        if page_count < 1:
            logger.warning("Skipping unreadable artifact %s", result.artifact_path)
            continue
        files.append(result.artifact_path)
        outline.append(OutlineEntry(title=result.title, position=current_page))
        current_page += page_count

    if not files:
        raise MergeError("No PDFs found to merge.")

    os.makedirs(output_dir, exist_ok=True)
    merged_path = os.path.join(output_dir, f"{sanitize_filename(collection_title)}.pdf")
    deliverable = MergedDeliverable(path=merged_path, item_count=len(files), outline_entries=outline)

    try:
        _write_merged(files, outline, collection_title, merged_path)
    except Exception as e:
        message = f"Could not add bookmarks, saving without them: {e}"
        logger.warning(message)
        deliverable.warnings.append(message)
        deliverable.outline_entries = []
        try:
            _write_merged(files, None, collection_title, merged_path)
        except Exception as e:
            raise MergeError(f"Error during PDF merge: {e}") from e

    logger.info("Merged %d PDFs into %s", len(files), merged_path)

    if delete_after_merge:
        removed = remove_files(files)
        logger.info("Removed %d per-item PDFs", removed)

    return deliverable


def _write_merged(files, outline, title, merged_path):
    merger = PdfMerger()
    try:
        for filepath in files:
            logger.debug("Appending: %s", os.path.basename(filepath))
            merger.append(filepath)

        for entry in outline or []:
            merger.add_outline_item(entry.title, entry.position)

        merger.add_metadata({
            '/Title': title,
            '/Subject': f'{len(files)} chapters',
        })

        # Write next to the target and swap in only once the bytes are on disk
        tmp_path = merged_path + '.part'
        with open(tmp_path, 'wb') as f:
            merger.write(f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, merged_path)
    finally:
        merger.close()
        if os.path.exists(merged_path + '.part'):
            os.remove(merged_path + '.part')
