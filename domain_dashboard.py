# ============================================================
# 🌐 ANS Domain Dashboard
# 域名解析 / 反向解析 / 持有域名列表
# ============================================================

import asyncio

import base58
import pandas as pd
import streamlit as st

from registry_config import RegistryConfig
from tld_parser import create_name_service


# ============================================================
# Helper functions
# ============================================================
def detect_query_type(query: str):
    query = query.strip()
    if not query:
        return None
    if "." in query:
        return "domain"
    try:
        if len(base58.b58decode(query)) == 32:
            return "address"
    except ValueError:
        pass
    return None


def format_address(addr: str):
    if len(addr) <= 12:
        return addr
    return f"{addr[:4]}...{addr[-4:]}"


def domains_dataframe(entries):
    rows = [
        {"域名 (Domain)": e.domain, "Name Account": str(e.name_account)}
        for e in entries
    ]
    return pd.DataFrame(rows, columns=["域名 (Domain)", "Name Account"])


async def lookup_domain(domain_tld: str, config: RegistryConfig):
    async with create_name_service(config=config) as service:
        record = await service.resolve_record_from_domain_tld(domain_tld)
        if record is None:
            return None
        return record.pretty()


async def lookup_address(address: str, config: RegistryConfig, tld: str = None):
    async with create_name_service(config=config) as service:
        main_domain = await service.get_main_domain_checked(address)
        domains = await service.enumerate_domains(address, tld or None)
        return main_domain.main_domain, domains


def render_record(domain_tld: str, record: dict):
    st.markdown(f"### 📄 {domain_tld}")
    if record["isValid"]:
        st.success(f"✅ 擁有者 (Owner)：{record['owner']}")
    else:
        st.warning("⚠️ 域名已過期 (Expired)，目前沒有擁有者")
    df = pd.DataFrame([{"欄位": k, "值": v} for k, v in record.items()])
    st.dataframe(df)


# ============================================================
# Streamlit UI
# ============================================================
def main():
    config = RegistryConfig.from_env()

    st.set_page_config(page_title="ANS Domain Dashboard", layout="wide")
    st.title("🌐 ANS 域名儀表板")

    query = st.text_input("域名或錢包地址 (domain.tld / Solana address)", "")
    tld = st.text_input("只查詢此 TLD（可留空）", "")

    if not st.button("開始查詢"):
        return

    query_type = detect_query_type(query)
    if not query_type:
        st.error("❌ 請輸入有效的域名或 Solana 地址。")
        st.stop()
        return

    if query_type == "domain":
        st.info(f"🔍 正在解析 {query} ...")
        record = asyncio.run(lookup_domain(query.strip(), config))
        if record is None:
            st.error("❌ 找不到此域名。")
            return
        render_record(query.strip(), record)
        return

    st.info(f"🔍 正在查詢 {format_address(query.strip())} 持有的域名 ...")
    main_domain, domains = asyncio.run(lookup_address(query.strip(), config, tld.strip()))
    if main_domain:
        st.success(f"✅ 主域名 (Main Domain)：{main_domain}")

    if domains:
        st.markdown(f"### 📜 持有域名（共 {len(domains)} 個）")
        st.dataframe(domains_dataframe(domains))
    else:
        st.warning("📭 此地址沒有持有任何域名。")


if __name__ == "__main__":
    main()
