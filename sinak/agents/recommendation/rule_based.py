"""
Rule-based recommendations.

Used when Gemini is not configured, when every AI attempt fails, and (for the
canned set) when AI_BYPASS_MODE is enabled. Content is static per business
stage; every stage also receives the financial literacy recommendation.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sinak.agents.recommendation.factory import build_recommendation
from sinak.schemas.profile import BusinessProfile
from sinak.schemas.recommendations import Recommendation

logger = logging.getLogger(__name__)


def _days_from_now(days: int, date_only: bool = False) -> str:
    target = datetime.now(timezone.utc) + timedelta(days=days)
    return target.date().isoformat() if date_only else target.isoformat()


def _existence_stage() -> List[Dict[str, Any]]:
    return [{
        "title": "Validasi Model Bisnis",
        "description": (
            "Pastikan produk/layanan Anda memenuhi kebutuhan pasar yang nyata melalui riset "
            "mendalam dan validasi langsung dengan calon pelanggan. Ini adalah langkah kritis "
            "untuk mengurangi risiko kegagalan bisnis."
        ),
        "category": "growth_strategy",
        "priority": "critical",
        "businessStage": "existence",
        "estimatedTimeframe": "2-4 minggu",
        "expectedImpact": (
            "Mengurangi risiko kegagalan bisnis hingga 60% dan meningkatkan peluang sukses "
            "jangka panjang"
        ),
        "reasoning": (
            "Pada tahap keberadaan, validasi pasar adalah kunci untuk memastikan bisnis dapat "
            "bertahan dan berkembang"
        ),
        "estimatedCost": "Rp 500.000 - 1.500.000",
        "difficultyLevel": "medium",
        "tags": ["validasi pasar", "riset pelanggan", "model bisnis", "startup"],
        "progressSteps": [
            {
                "title": "Persiapan Riset Pasar",
                "description": "Siapkan framework dan tools untuk melakukan riset pasar yang efektif",
                "order": 0,
                "isRequired": True,
                "estimatedDuration": "2-3 hari",
                "resources": [
                    {
                        "title": "Template Riset Pasar UMKM",
                        "description": "Template lengkap untuk riset pasar khusus UMKM Indonesia",
                        "type": "template",
                    },
                    {
                        "title": "Panduan Wawancara Pelanggan",
                        "description": "Teknik wawancara efektif untuk mendapatkan insight pelanggan",
                        "type": "guide",
                    },
                ],
                "tips": [
                    "Fokus pada masalah yang ingin dipecahkan, bukan solusi yang ingin dijual",
                    "Siapkan pertanyaan terbuka untuk mendapatkan insight mendalam",
                    "Dokumentasikan semua feedback dengan detail",
                ],
                "checkpoints": [
                    {
                        "title": "Daftar pertanyaan riset sudah siap",
                        "description": "Minimal 15 pertanyaan terstruktur untuk wawancara",
                        "order": 0,
                    },
                    {
                        "title": "Target responden sudah ditentukan",
                        "description": "Identifikasi 25-30 calon pelanggan untuk diwawancara",
                        "order": 1,
                    },
                    {
                        "title": "Tools dokumentasi sudah disiapkan",
                        "description": "Aplikasi recording, form survey, atau spreadsheet tracking",
                        "order": 2,
                    },
                ],
            },
            {
                "title": "Eksekusi Wawancara Pelanggan",
                "description": (
                    "Lakukan wawancara mendalam dengan calon pelanggan untuk memvalidasi asumsi bisnis"
                ),
                "order": 1,
                "isRequired": True,
                "estimatedDuration": "1-2 minggu",
                "resources": [{
                    "title": "Script Wawancara Validasi",
                    "description": "Script percakapan untuk wawancara validasi bisnis",
                    "type": "template",
                }],
                "tips": [
                    "Lakukan wawancara tatap muka atau video call untuk hasil terbaik",
                    "Jangan leading questions - biarkan responden bercerita",
                    "Catat tidak hanya jawaban, tapi juga emosi dan reaksi",
                ],
                "checkpoints": [
                    {
                        "title": "Wawancara dengan 10 responden pertama",
                        "description": "Selesaikan wawancara dengan 10 calon pelanggan",
                        "order": 0,
                    },
                    {
                        "title": "Analisis pola feedback awal",
                        "description": "Identifikasi pola dan tema umum dari feedback",
                        "order": 1,
                    },
                    {
                        "title": "Wawancara dengan 15 responden tambahan",
                        "description": "Lanjutkan wawancara untuk validasi pola yang ditemukan",
                        "order": 2,
                    },
                ],
            },
            {
                "title": "Analisis dan Kesimpulan",
                "description": "Analisis hasil riset dan buat keputusan strategis berdasarkan data",
                "order": 2,
                "isRequired": True,
                "estimatedDuration": "3-5 hari",
                "resources": [{
                    "title": "Template Analisis Riset",
                    "description": "Framework untuk menganalisis hasil riset pasar",
                    "type": "template",
                }],
                "tips": [
                    "Kategorikan feedback menjadi: masalah, solusi, harga, dan distribusi",
                    "Hitung persentase responden yang mengkonfirmasi setiap asumsi",
                    "Identifikasi red flags yang memerlukan pivot model bisnis",
                ],
                "checkpoints": [
                    {
                        "title": "Data wawancara sudah dikompilasi",
                        "description": "Semua hasil wawancara terdokumentasi dengan rapi",
                        "order": 0,
                    },
                    {
                        "title": "Analisis pola dan insight selesai",
                        "description": "Identifikasi insight kunci dan pola feedback",
                        "order": 1,
                    },
                    {
                        "title": "Rekomendasi aksi sudah dibuat",
                        "description": "Buat rekomendasi konkret berdasarkan hasil riset",
                        "order": 2,
                    },
                ],
            },
        ],
        "milestones": [{
            "title": "Riset Pasar Selesai",
            "description": "Menyelesaikan riset komprehensif dengan minimal 25 responden",
            "targetDate": _days_from_now(21, date_only=True),
            "reward": "Pemahaman mendalam tentang kebutuhan pasar dan validasi model bisnis",
            "icon": "🎯",
            "requiredSteps": [0, 1, 2],
        }],
        "actionItems": [{
            "title": "Survei Pelanggan Potensial",
            "description": (
                "Lakukan wawancara dengan 25-30 calon pelanggan untuk memvalidasi kebutuhan"
            ),
            "estimatedHours": 20,
            "deadline": _days_from_now(14),
        }],
        "resources": [{
            "title": "Template Survei Validasi Bisnis",
            "description": "Template pertanyaan untuk validasi model bisnis",
            "type": "template",
        }],
    }]


def _survival_stage() -> List[Dict[str, Any]]:
    return [{
        "title": "Implementasi Sistem Keuangan Dasar",
        "description": "Bangun sistem pencatatan keuangan yang akurat untuk kontrol kas yang lebih baik",
        "category": "financial_management",
        "priority": "high",
        "businessStage": "survival",
        "estimatedTimeframe": "1-2 minggu",
        "expectedImpact": "Meningkatkan kontrol keuangan dan membantu mencapai break-even",
        "reasoning": "Sistem keuangan yang baik adalah fondasi untuk bertahan dan tumbuh",
        "actionItems": [{
            "title": "Setup Aplikasi Keuangan",
            "description": "Install dan konfigurasi aplikasi pencatatan keuangan sederhana",
            "estimatedHours": 4,
            "deadline": _days_from_now(7),
        }],
    }]


def _success_stage() -> List[Dict[str, Any]]:
    return [{
        "title": "Strategi Ekspansi Pasar",
        "description": "Kembangkan rencana untuk memperluas jangkauan pasar atau diversifikasi produk",
        "category": "marketing_sales",
        "priority": "high",
        "businessStage": "success",
        "estimatedTimeframe": "4-6 minggu",
        "expectedImpact": (
            "Meningkatkan pendapatan dan mengurangi risiko ketergantungan pada satu pasar"
        ),
        "reasoning": "Pada tahap sukses, ekspansi adalah kunci untuk pertumbuhan berkelanjutan",
    }]


def _takeoff_stage() -> List[Dict[str, Any]]:
    return [{
        "title": "Pengembangan Struktur Organisasi",
        "description": "Bangun struktur organisasi yang dapat mendukung pertumbuhan cepat",
        "category": "human_resources",
        "priority": "critical",
        "businessStage": "takeoff",
        "estimatedTimeframe": "6-8 minggu",
        "expectedImpact": "Memungkinkan delegasi efektif dan skalabilitas operasional",
        "reasoning": "Pertumbuhan cepat memerlukan struktur yang jelas untuk menghindari kekacauan",
    }]


def _maturity_stage() -> List[Dict[str, Any]]:
    return [{
        "title": "Program Inovasi Berkelanjutan",
        "description": "Implementasikan sistem untuk mendorong inovasi dan adaptasi pasar",
        "category": "growth_strategy",
        "priority": "medium",
        "businessStage": "resource_maturity",
        "estimatedTimeframe": "8-12 minggu",
        "expectedImpact": "Mempertahankan daya saing dan relevansi di pasar",
        "reasoning": "Bisnis matang perlu terus berinovasi untuk menghindari stagnasi",
    }]


def _general() -> List[Dict[str, Any]]:
    return [{
        "title": "Analisis Kompetitor",
        "description": "Lakukan analisis mendalam terhadap pesaing untuk mengidentifikasi peluang",
        "category": "marketing_sales",
        "priority": "medium",
        "estimatedTimeframe": "2-3 minggu",
        "expectedImpact": "Memahami posisi kompetitif dan mengidentifikasi peluang diferensiasi",
        "reasoning": "Pemahaman kompetitor penting untuk semua tahap bisnis",
    }]


def _financial_literacy() -> List[Dict[str, Any]]:
    return [{
        "title": "Pelatihan Literasi Keuangan UMKM",
        "description": "Ikuti program pelatihan untuk meningkatkan pemahaman keuangan bisnis",
        "category": "financial_literacy",
        "priority": "high",
        "estimatedTimeframe": "4-6 minggu",
        "expectedImpact": "Meningkatkan kemampuan pengambilan keputusan keuangan yang lebih baik",
        "reasoning": "Literasi keuangan adalah fondasi untuk semua keputusan bisnis yang sehat",
        "resources": [{
            "title": "Modul Literasi Keuangan OJK",
            "description": "Materi pembelajaran literasi keuangan dari Otoritas Jasa Keuangan",
            "type": "course",
            "url": "https://sikapiuangmu.ojk.go.id",
        }],
    }]


_STAGE_CATALOG = {
    "existence": _existence_stage,
    "survival": _survival_stage,
    "success": _success_stage,
    "takeoff": _takeoff_stage,
    "resource_maturity": _maturity_stage,
}


def generate_rule_based_recommendations(
    profile: BusinessProfile,
    stage: Optional[str] = None,
) -> List[Recommendation]:
    """
    Generate static recommendations for a business stage.

    Args:
        profile: Business profile (its business_stage is used when stage is None)
        stage: Stage override, e.g. from the diagnosis result

    Returns:
        Stage-specific recommendations followed by the financial literacy one
    """
    stage = stage or profile.business_stage
    catalog = _STAGE_CATALOG.get(stage or "", _general)
    raw_items = catalog() + _financial_literacy()

    recommendations = [
        build_recommendation(raw, profile.user_id, index, business_stage=stage)
        for index, raw in enumerate(raw_items)
    ]
    logger.info(f"Generated {len(recommendations)} rule-based recommendations (stage={stage})")
    return recommendations


def create_simple_recommendations(user_id: Optional[str]) -> List[Recommendation]:
    """Three canned recommendations returned in bypass mode."""
    raw_items = [
        {
            "title": "Optimasi Manajemen Keuangan",
            "description": (
                "Implementasikan sistem pencatatan keuangan yang lebih terstruktur untuk "
                "meningkatkan kontrol cash flow dan profitabilitas bisnis."
            ),
            "category": "financial_management",
            "priority": "high",
            "estimatedTimeframe": "2-3 minggu",
            "expectedImpact": "Peningkatan kontrol keuangan dan visibilitas cash flow",
            "reasoning": "Manajemen keuangan yang baik adalah fondasi bisnis yang sehat",
            "actionItems": [{
                "title": "Setup sistem pencatatan",
                "description": (
                    "Implementasikan software akuntansi atau sistem pencatatan manual yang konsisten"
                ),
                "estimatedHours": 8,
            }],
            "resources": [{
                "title": "Panduan Manajemen Keuangan UMKM",
                "description": "Panduan lengkap untuk mengelola keuangan bisnis kecil",
                "type": "guide",
            }],
        },
        {
            "title": "Strategi Digital Marketing",
            "description": (
                "Kembangkan strategi pemasaran digital yang efektif untuk menjangkau target "
                "pasar yang lebih luas dan meningkatkan brand awareness."
            ),
            "category": "marketing_sales",
            "priority": "medium",
            "estimatedTimeframe": "3-4 minggu",
            "expectedImpact": "Peningkatan jangkauan pasar dan brand awareness",
            "reasoning": "Digital marketing adalah kunci pertumbuhan bisnis di era digital",
            "actionItems": [{
                "title": "Buat konten media sosial",
                "description": "Kembangkan strategi konten untuk platform media sosial utama",
                "estimatedHours": 12,
            }],
            "resources": [{
                "title": "Panduan Digital Marketing untuk UMKM",
                "description": "Strategi pemasaran digital yang efektif untuk bisnis kecil",
                "type": "guide",
            }],
        },
        {
            "title": "Peningkatan Efisiensi Operasional",
            "description": (
                "Evaluasi dan optimasi proses operasional untuk mengurangi waste dan "
                "meningkatkan produktivitas tim."
            ),
            "category": "operations",
            "priority": "medium",
            "estimatedTimeframe": "2-4 minggu",
            "expectedImpact": "Peningkatan efisiensi dan produktivitas operasional",
            "reasoning": (
                "Operasional yang efisien mengurangi biaya dan meningkatkan kepuasan pelanggan"
            ),
            "actionItems": [{
                "title": "Audit proses operasional",
                "description": "Lakukan evaluasi menyeluruh terhadap proses bisnis saat ini",
                "estimatedHours": 16,
            }],
            "resources": [{
                "title": "Panduan Optimasi Operasional",
                "description": "Cara meningkatkan efisiensi operasional bisnis",
                "type": "guide",
            }],
        },
    ]
    return [build_recommendation(raw, user_id, index) for index, raw in enumerate(raw_items)]
