# ============================================
# MINTS
# ============================================
WSOL_MINT = "So11111111111111111111111111111111111111112"
SOL_MINT = WSOL_MINT
LAMPORTS_PER_SOL = 1_000_000_000

# ============================================
# VENUES
# ============================================
VENUE_PUMPFUN = "pumpfun"
VENUE_PUMPSWAP = "pumpswap"
VENUE_RAYDIUM = "raydium"
VENUE_METEORA = "meteora"
VENUE_LETSBONK = "letsbonk"

SUPPORTED_VENUES = {
    VENUE_PUMPFUN,
    VENUE_PUMPSWAP,
    VENUE_RAYDIUM,
    VENUE_METEORA,
    VENUE_LETSBONK,
}

# ============================================
# API ENDPOINTS
# ============================================
JUPITER_PRICE_API_BASE = "https://lite-api.jup.ag/price/v3"
PUMPPORTAL_WS_URL = "wss://pumpportal.fun/api/data"
TELEGRAM_API_BASE = "https://api.telegram.org"

# ============================================
# NUMERIC TOLERANCES
# ============================================
AMOUNT_REL_TOLERANCE = 1e-9
DEFAULT_DUST_AMOUNT = 1e-9
