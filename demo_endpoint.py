"""
Quick demo script to run the SiNaK API locally.

This script starts a local server and shows how to make requests to the
recommendation endpoints.
"""

import uvicorn

if __name__ == "__main__":
    print("=" * 60)
    print("Starting SiNaK Backend Demo")
    print("=" * 60)
    print()
    print("📌 API Endpoints:")
    print("   - Health Check:     GET  http://localhost:8000/health")
    print("   - Generate:         POST http://localhost:8000/recommendations/generate")
    print("   - Recommendations:  GET  http://localhost:8000/recommendations")
    print("   - API Docs:              http://localhost:8000/docs")
    print()
    print("🔐 Authentication:")
    print("   All endpoints (except /health) require a Firebase ID token:")
    print("   Authorization: Bearer <id-token>")
    print()
    print("💡 Without GOOGLE_API_KEY the rule-based catalog is used.")
    print("   Set FIRESTORE_DISABLED=true to run without Firestore.")
    print()
    print("📝 Test with curl:")
    print('   curl -X POST "http://localhost:8000/recommendations/generate" \\')
    print('     -H "Authorization: Bearer $ID_TOKEN" \\')
    print('     -H "Content-Type: application/json" \\')
    print('     -d \'{"business_profile": {"business_name": "Warung Bu Sari", "business_stage": "survival"}}\'')
    print()
    print("=" * 60)
    print("Starting server on http://localhost:8000")
    print("Press Ctrl+C to stop")
    print("=" * 60)
    print()

    uvicorn.run(
        "sinak.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
