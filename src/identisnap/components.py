"""
Construction of pipeline components from settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from identisnap.services.bin_ledger import BinLedger
from identisnap.services.feature_extractor import SIFTFeatureExtractor
from identisnap.services.geometric_verifier import RANSACVerifier
from identisnap.services.homography import (
    HomographyEstimator,
    OpenCVHomographyEstimator,
    RANSACHomographyEstimator,
)
from identisnap.services.index_store import DescriptorIndexStore
from identisnap.services.locator import Locator
from identisnap.services.match_finder import ApproximateMatchFinder
from identisnap.services.pairwise import PairwiseMatcher
from identisnap.services.recogniser import Recogniser
from identisnap.services.search_backend import FAISSSearchBackend

if TYPE_CHECKING:
    from identisnap.config import Settings


def create_extractor(settings: Settings) -> SIFTFeatureExtractor:
    return SIFTFeatureExtractor(
        max_features=settings.sift.max_features,
        contrast_threshold=settings.sift.contrast_threshold,
        edge_threshold=settings.sift.edge_threshold,
        sigma=settings.sift.sigma,
    )


def create_backend(settings: Settings) -> FAISSSearchBackend:
    return FAISSSearchBackend(
        index_type=settings.search.index_type,
        hnsw_m=settings.search.hnsw_m,
        ef_search=settings.search.ef_search,
        ef_construction=settings.search.ef_construction,
    )


def create_estimator(settings: Settings) -> HomographyEstimator:
    if settings.ransac.estimator == "numpy":
        return RANSACHomographyEstimator(
            max_iters=settings.ransac.max_iters,
            confidence=settings.ransac.confidence,
            seed=settings.ransac.seed,
        )
    return OpenCVHomographyEstimator(
        max_iters=settings.ransac.max_iters,
        confidence=settings.ransac.confidence,
    )


def create_verifier(settings: Settings) -> RANSACVerifier:
    return RANSACVerifier(
        estimator=create_estimator(settings),
        reproj_threshold=settings.ransac.reproj_threshold,
        min_area_ratio=settings.verification.min_area_ratio,
    )


def create_pairwise_matcher(settings: Settings) -> PairwiseMatcher:
    return PairwiseMatcher(
        extractor=create_extractor(settings),
        match_finder=ApproximateMatchFinder(create_backend(settings), k=settings.matching.k),
        verifier=create_verifier(settings),
        ratio=settings.matching.ratio_threshold,
        root_sift=settings.matching.root_sift,
        filter_mode=settings.matching.filter,
        min_distance_floor=settings.matching.min_distance_floor,
        min_matches=settings.verification.min_matches,
    )


def create_ledger(settings: Settings, ledger_path: Path | None = None) -> BinLedger:
    return BinLedger(ledger_path or Path(settings.catalog.ledger_path))


def create_index_store(
    settings: Settings,
    index_dir: Path | None = None,
    ledger_path: Path | None = None,
) -> DescriptorIndexStore:
    return DescriptorIndexStore(
        extractor=create_extractor(settings),
        backend=create_backend(settings),
        index_dir=index_dir or Path(settings.catalog.index_dir),
        ledger=create_ledger(settings, ledger_path),
        root_sift=settings.matching.root_sift,
    )


def create_recogniser(settings: Settings, index_path: Path) -> Recogniser:
    return Recogniser(
        index_path=index_path,
        extractor=create_extractor(settings),
        backend=create_backend(settings),
        ratio=settings.matching.ratio_threshold,
        root_sift=settings.matching.root_sift,
    )


def create_locator(settings: Settings) -> Locator:
    return Locator(
        ledger=create_ledger(settings),
        index_dir=Path(settings.catalog.index_dir),
        recogniser_factory=lambda path: create_recogniser(settings, path),
    )
