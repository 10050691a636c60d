"""
Shared constants for Firestore layout, recommendation enums and bookmark collections.

Firestore layout:
    users/{uid}                              user document (profile, analytics,
                                             recommendations when small enough)
    users/{uid}/data/recommendations         recommendations when the payload
                                             exceeds LARGE_PAYLOAD_BYTES
"""

USERS_COLLECTION = "users"
USER_DATA_SUBCOLLECTION = "data"
RECOMMENDATIONS_DOCUMENT = "recommendations"

# Recommendation payloads above this size are moved to a sub-document
LARGE_PAYLOAD_BYTES = 500 * 1024

BUSINESS_STAGES = (
    "existence",
    "survival",
    "success",
    "takeoff",
    "resource_maturity",
)

RECOMMENDATION_CATEGORIES = (
    "financial_management",
    "marketing_sales",
    "operations",
    "human_resources",
    "technology",
    "legal_compliance",
    "growth_strategy",
    "financial_literacy",
)

RESOURCE_TYPES = ("article", "video", "tool", "course", "template", "website", "guide")

DIFFICULTY_LEVELS = ("easy", "medium", "hard")

# Higher weight sorts first
PRIORITY_WEIGHTS = {
    "critical": 4,
    "high": 3,
    "medium": 2,
    "low": 1,
}

DEFAULT_CATEGORY = "growth_strategy"
DEFAULT_PRIORITY = "medium"

DEFAULT_BOOKMARK_COLLECTION = "default"

DEFAULT_BOOKMARK_COLLECTIONS = {
    "default": {
        "name": "Favorit Saya",
        "description": "Rekomendasi yang Anda simpan",
    },
    "priority": {
        "name": "Prioritas Tinggi",
        "description": "Rekomendasi yang perlu segera dikerjakan",
    },
    "later": {
        "name": "Untuk Nanti",
        "description": "Rekomendasi untuk dikerjakan nanti",
    },
}

# Display information for the Churchill & Lewis growth stages
BUSINESS_STAGE_INFO = {
    "existence": {
        "name": "Tahap Keberadaan",
        "description": "Fokus pada bertahan hidup dan membangun basis pelanggan",
        "key_focus": ["Validasi produk", "Mencari pelanggan", "Cashflow positif"],
        "challenges": ["Modal terbatas", "Belum ada sistem", "Ketidakpastian pasar"],
    },
    "survival": {
        "name": "Tahap Bertahan",
        "description": "Mencapai break-even dan stabilitas operasional",
        "key_focus": ["Efisiensi operasional", "Kontrol keuangan", "Kualitas produk"],
        "challenges": ["Kompetisi", "Manajemen kas", "Kualitas konsisten"],
    },
    "success": {
        "name": "Tahap Sukses",
        "description": "Bisnis stabil dengan pilihan untuk tumbuh atau mempertahankan",
        "key_focus": ["Ekspansi pasar", "Diversifikasi", "Sistem manajemen"],
        "challenges": ["Keputusan strategis", "Delegasi", "Inovasi berkelanjutan"],
    },
    "takeoff": {
        "name": "Tahap Lepas Landas",
        "description": "Pertumbuhan cepat dengan kebutuhan sumber daya besar",
        "key_focus": ["Skalabilitas", "Manajemen tim", "Pendanaan pertumbuhan"],
        "challenges": ["Manajemen pertumbuhan", "Kontrol kualitas", "Struktur organisasi"],
    },
    "resource_maturity": {
        "name": "Tahap Kedewasaan Sumber Daya",
        "description": "Bisnis mapan dengan fokus pada efisiensi dan inovasi",
        "key_focus": ["Inovasi", "Efisiensi", "Ekspansi strategis"],
        "challenges": ["Birokrasi", "Inovasi berkelanjutan", "Adaptasi pasar"],
    },
}


def get_business_stage_info(stage: str | None) -> dict:
    """Return display info for a stage, defaulting to the existence stage."""
    return BUSINESS_STAGE_INFO.get(stage or "", BUSINESS_STAGE_INFO["existence"])
