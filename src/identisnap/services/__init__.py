"""Service layer components."""

from identisnap.services.bin_ledger import BinAllocator, BinLedger, LedgerEntry
from identisnap.services.descriptor_index import DescriptorIndex, LocationTag
from identisnap.services.feature_extractor import SIFTFeatureExtractor
from identisnap.services.geometric_verifier import RANSACVerifier
from identisnap.services.homography import OpenCVHomographyEstimator, RANSACHomographyEstimator
from identisnap.services.index_store import DescriptorIndexStore
from identisnap.services.locator import Locator
from identisnap.services.match_finder import ApproximateMatchFinder, Correspondence
from identisnap.services.pairwise import PairwiseMatcher
from identisnap.services.recogniser import Recogniser
from identisnap.services.search_backend import FAISSSearchBackend

__all__ = [
    "ApproximateMatchFinder",
    "BinAllocator",
    "BinLedger",
    "Correspondence",
    "DescriptorIndex",
    "DescriptorIndexStore",
    "FAISSSearchBackend",
    "LedgerEntry",
    "LocationTag",
    "Locator",
    "OpenCVHomographyEstimator",
    "PairwiseMatcher",
    "RANSACHomographyEstimator",
    "RANSACVerifier",
    "Recogniser",
    "SIFTFeatureExtractor",
]
