"""
Recommendation Prompt Templates

Contains the system prompt and user prompt builder for business
recommendations generated by Gemini.

Architecture:
- Pattern: Single LLM call, JSON requested in the prompt (no response_schema)
- Model: Gemini 2.0 Flash (configurable via GEMINI_MODEL)
- Temperature: 0.7 (varied, creative recommendations)
- Output: JSON object parsed from text, repaired by json_repair when malformed

Prompt Engineering Pattern:
- System prompt defines the consultant persona and Indonesian context
- User prompt carries the business profile, diagnosis results and the JSON schema
- All content is in Bahasa Indonesia because recommendations are shown verbatim
"""

from datetime import date
from typing import Any, Dict, List, Optional

from sinak.schemas.profile import BusinessProfile, DiagnosisData
from sinak.utils.constants import get_business_stage_info

_MONTHS_ID = [
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
]

# =============================================================================
# SYSTEM PROMPT
# =============================================================================

RECOMMENDATION_SYSTEM_PROMPT = """Anda adalah Dr. Sari Wijaya, konsultan bisnis senior dengan 20+ tahun pengalaman khusus dalam pengembangan UMKM Indonesia.

<keahlian>
- PhD Manajemen Bisnis dengan spesialisasi UMKM Asia Tenggara
- Sertifikasi konsultan bisnis dari Kementerian Koperasi dan UKM RI
- Pengalaman mendampingi 500+ UMKM di berbagai sektor
- Pemahaman mendalam model Churchill & Lewis untuk konteks Indonesia
- Expertise dalam digitalisasi UMKM dan transformasi digital
</keahlian>

<konteks_indonesia>
- Regulasi: UU Cipta Kerja, PP UMKM No. 7/2021, Perpres 98/2021
- Program pemerintah: KUR (Kredit Usaha Rakyat), BPUM, PEN UMKM
- Tren pasar: e-commerce, adopsi pembayaran digital (QRIS), fokus keberlanjutan
- Tantangan utama: inflasi, gangguan rantai pasok, kekurangan talenta
- Peluang: digitalisasi ekspor, ekonomi hijau, industri halal
</konteks_indonesia>

<metodologi>
- Gunakan framework Churchill & Lewis (Existence, Survival, Success, Take-off, Resource Maturity)
- Pertimbangkan budaya kerja Indonesia, preferensi konsumen dan infrastruktur lokal
- Fokus pada solusi praktis, hemat biaya dan berkelanjutan
- Prioritaskan quick wins dan langkah strategis jangka panjang
</metodologi>

<format_output>
Selalu jawab HANYA dengan satu objek JSON valid sesuai skema di pesan pengguna.
Tanpa markdown, tanpa teks tambahan, semua string memakai double quotes, tanpa trailing comma.
</format_output>
"""

# =============================================================================
# OUTPUT SCHEMA
# =============================================================================

RECOMMENDATION_JSON_SCHEMA = """{
  "recommendations": [
    {
      "title": "Judul rekomendasi yang jelas dan actionable",
      "description": "Deskripsi detail: apa, mengapa, dan bagaimana (min 100 kata)",
      "category": "pilih: financial_management, marketing_sales, operations, human_resources, technology, legal_compliance, growth_strategy, financial_literacy",
      "priority": "pilih: critical, high, medium, low",
      "businessStage": "tahap bisnis yang paling cocok untuk rekomendasi ini",
      "estimatedTimeframe": "estimasi waktu penyelesaian (contoh: 2-4 minggu)",
      "expectedImpact": "dampak positif yang diharapkan dengan metrik spesifik",
      "reasoning": "analisis mengapa rekomendasi ini penting untuk bisnis saat ini",
      "estimatedCost": "estimasi biaya implementasi dalam Rupiah",
      "difficultyLevel": "pilih: easy, medium, hard",
      "tags": ["tag1", "tag2", "tag3"],
      "progressSteps": [
        {
          "title": "Nama langkah implementasi",
          "description": "Detail apa yang harus dilakukan pada langkah ini",
          "order": 1,
          "isRequired": true,
          "estimatedDuration": "estimasi waktu (contoh: 3-5 hari)",
          "resources": [
            {
              "title": "Nama resource",
              "description": "Deskripsi resource",
              "type": "pilih: article, video, tool, course, template, website, guide",
              "url": "URL valid atau '#'"
            }
          ],
          "tips": ["Tip praktis 1", "Tip praktis 2"],
          "checkpoints": [
            {"title": "Checkpoint yang harus dicapai", "description": "Detail checkpoint", "order": 1}
          ]
        }
      ],
      "milestones": [
        {
          "title": "Nama milestone penting",
          "description": "Deskripsi pencapaian milestone",
          "targetDate": "YYYY-MM-DD",
          "reward": "benefit atau pencapaian yang didapat",
          "icon": "emoji yang sesuai",
          "requiredSteps": [0, 1, 2]
        }
      ],
      "actionItems": [
        {
          "title": "Aksi spesifik yang dapat dilakukan",
          "description": "Detail implementasi step-by-step",
          "estimatedHours": 8,
          "deadline": "YYYY-MM-DD"
        }
      ]
    }
  ],
  "summary": {
    "totalRecommendations": 7,
    "priorityDistribution": {"critical": 2, "high": 3, "medium": 2, "low": 0},
    "estimatedImplementationTime": "3-6 bulan",
    "keyFocusAreas": ["area1", "area2", "area3"],
    "nextSteps": "Langkah pertama yang harus segera dilakukan"
  }
}"""


def _join(items: Optional[List[str]], fallback: str) -> str:
    values = [str(item) for item in (items or []) if item]
    return ", ".join(values) if values else fallback


def format_rupiah(amount: Optional[float]) -> str:
    """Format an amount as Rupiah with Indonesian thousand separators."""
    if amount is None:
        return "Tidak disebutkan"
    return "Rp " + f"{int(round(amount)):,}".replace(",", ".")


def format_indonesian_date(value: date) -> str:
    return f"{value.day} {_MONTHS_ID[value.month - 1]} {value.year}"


def build_ai_context(profile: BusinessProfile, diagnosis: DiagnosisData) -> Dict[str, Any]:
    """
    Collect the profile and diagnosis facts the prompt needs.

    The stage reported by the diagnosis wins over the stage stored on the profile.
    """
    stage = diagnosis.current_stage or profile.business_stage
    return {
        "business_profile": {
            "name": profile.business_name,
            "category": profile.business_category or "Tidak disebutkan",
            "stage": stage or "Belum didiagnosis",
            "employee_count": profile.employee_count if profile.employee_count is not None else "-",
            "monthly_revenue": format_rupiah(profile.monthly_revenue),
            "business_age": profile.business_age if profile.business_age is not None else "-",
            "location": profile.location or "Indonesia",
            "challenges": profile.challenges,
            "goals": profile.goals,
        },
        "diagnosis_results": {
            "current_stage": stage or "Belum didiagnosis",
            "stage_info": get_business_stage_info(stage),
            "strengths": diagnosis.strengths,
            "weaknesses": diagnosis.weaknesses,
            "opportunities": diagnosis.opportunities,
        },
        "context": {
            "country": "Indonesia",
            "target_audience": "UMKM (Usaha Mikro, Kecil, dan Menengah)",
            "language": "Indonesian",
        },
    }


def build_recommendation_user_prompt(
    profile: BusinessProfile,
    diagnosis: DiagnosisData,
    today: Optional[date] = None,
) -> str:
    """
    Build the user prompt for recommendation generation.

    Args:
        profile: Business profile of the user
        diagnosis: Diagnosis results from the client questionnaire
        today: Date shown in the task header (defaults to today)

    Returns:
        Formatted user prompt string
    """
    context = build_ai_context(profile, diagnosis)
    business = context["business_profile"]
    results = context["diagnosis_results"]
    stage_info = results["stage_info"]
    current_date = format_indonesian_date(today or date.today())

    return f"""<tugas tanggal="{current_date}">
Analisis profil bisnis dan hasil diagnosis berikut, lalu berikan 6-10 rekomendasi strategis yang:
1. Spesifik untuk industri dan tahap bisnis klien
2. Actionable dengan langkah konkret dan timeline jelas
3. Relevan dengan kondisi pasar Indonesia saat ini
4. Mempertimbangkan keterbatasan sumber daya UMKM
5. Mengintegrasikan aspek digital dan tradisional
6. Menyertakan estimasi biaya dan ROI yang realistis
</tugas>

<profil_bisnis>
- Nama Bisnis: {business["name"]}
- Kategori: {business["category"]}
- Tahap Bisnis: {business["stage"]}
- Jumlah Karyawan: {business["employee_count"]} orang
- Pendapatan Bulanan: {business["monthly_revenue"]}
- Usia Bisnis: {business["business_age"]} tahun
- Lokasi: {business["location"]}
- Tantangan Utama: {_join(business["challenges"], "Belum diidentifikasi")}
- Tujuan Bisnis: {_join(business["goals"], "Belum ditetapkan")}
</profil_bisnis>

<hasil_diagnosis>
- Tahap Saat Ini: {results["current_stage"]} ({stage_info["name"]}: {stage_info["description"]})
- Fokus Utama Tahap Ini: {_join(stage_info["key_focus"], "-")}
- Kekuatan: {_join(results["strengths"], "Sedang dianalisis")}
- Area Pengembangan: {_join(results["weaknesses"], "Sedang dianalisis")}
- Peluang: {_join(results["opportunities"], "Sedang diidentifikasi")}
</hasil_diagnosis>

<panduan>
- Quick wins (1-4 minggu), tujuan menengah (1-3 bulan) dan visi jangka panjang (3-12 bulan)
- Prioritaskan tools, platform dan layanan yang tersedia di Indonesia
- Manfaatkan ekosistem lokal di {business["location"]}
- Setiap rekomendasi harus bisa mulai dijalankan dalam 30 hari pertama
- requiredSteps pada milestone berisi indeks (mulai dari 0) dari progressSteps
</panduan>

<skema_output>
{RECOMMENDATION_JSON_SCHEMA}
</skema_output>

MULAI JSON OUTPUT SEKARANG:"""
