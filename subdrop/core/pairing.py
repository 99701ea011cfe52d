"""Video/subtitle pairing.

Groups a flat list of dropped files into one group per video plus the
subtitles that clearly belong to it. Subtitles nobody claims are orphans.
"""

from loguru import logger

from subdrop.core.naming import (
    directories_match,
    get_base_name,
    is_language_suffix,
    is_subtitle_container,
    needs_content_sniffing,
)
from subdrop.models.media import FileEntry, PairedGroup, PairingResult

EXACT_MATCH = "exact match"
CONTAINER_MATCH = "subtitle directory match"


class PairingEngine:
    """Pairs videos with subtitles using directory and filename heuristics.

    Videos are processed in input order and the first video to match a
    subtitle keeps it; there is no backtracking. ``pair`` has no side effects,
    so the same input always yields the same groups.
    """

    def pair(self, files: list[FileEntry]) -> PairingResult:
        videos = [f for f in files if f.is_video]
        subtitles = [f for f in files if f.is_subtitle]
        used: set[str] = set()
        groups: list[PairedGroup] = []

        for video in videos:
            group = PairedGroup(video=video)
            for subtitle in subtitles:
                if subtitle.full_path in used:
                    continue
                reason = self.match_reason(video, subtitle)
                if reason is None:
                    continue
                used.add(subtitle.full_path)
                group.subtitles.append(subtitle)
                group.match_types[subtitle.full_path] = reason
            groups.append(group)

        orphans = [s for s in subtitles if s.full_path not in used]

        if files:
            logger.debug(
                f"Paired {len(files)} files into {len(groups)} groups, {len(orphans)} orphaned subtitles"
            )
        return PairingResult(groups=groups, orphans=orphans)

    @staticmethod
    def match_reason(video: FileEntry, subtitle: FileEntry) -> str | None:
        """Why ``subtitle`` belongs to ``video``, or None if it does not.

        Args:
            video: Candidate video
            subtitle: Unused subtitle

        Returns:
            "exact match", "language: <code>", "subtitle directory match" or None
        """
        # .txt has to be confirmed by content sniffing before it can pair
        if needs_content_sniffing(subtitle.name):
            return None

        video_dir = video.directory
        subtitle_dir = subtitle.directory

        if subtitle_dir and is_subtitle_container(subtitle_dir):
            container_parent = subtitle_dir.rpartition("/")[0]
            if directories_match(container_parent, video_dir):
                return CONTAINER_MATCH

        if subtitle_dir != video_dir:
            return None

        video_base = get_base_name(video.name)
        subtitle_base = get_base_name(subtitle.name)
        if subtitle_base == video_base:
            return EXACT_MATCH

        prefix = video_base + "."
        if subtitle_base.startswith(prefix):
            suffix = subtitle_base[len(prefix) :]
            if is_language_suffix(suffix):
                return f"language: {suffix.lower()}"
        return None
